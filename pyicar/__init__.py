from . import catalog
from . import core
from . import grid
from . import parallel
from . import input
from . import forcing
from . import domain
from . import config
from .constants import *
from .catalog import Var, Category
from .domain import Domain
from .config import Options, Parameters, configure
from .input import ForcingData
