from . import maths, utils, inference, control, learning, algos
from .model import GenerativeModel
from .agent import Agent, MDPResult
from .hierarchy import SubordinateLink, SubordinateReport
from .utils import MDPConfigError

__version__ = "0.1.0"
