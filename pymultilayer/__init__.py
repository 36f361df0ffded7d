from . import core
from . import domain
from . import parallel
from . import operators
from . import viscous_surface
from . import viscosity
from . import tracer
from . import config
from . import debug
from .constants import *
from .operators import BottomBoundary
from .viscosity import Viscosity, ViscositySettings
