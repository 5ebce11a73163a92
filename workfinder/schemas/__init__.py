# Schemas package (re-export feature modules for stable imports)
from .auth.telegram import *
from .payments.withdrawal import *
from .projects.search import *
