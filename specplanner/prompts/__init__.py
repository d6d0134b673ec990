from .loader import PromptNotFoundError, load_prompt
from .renderer import PromptRenderer
