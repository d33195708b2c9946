from .base import Engine
from .reference import ReferenceEngine
from .operators import list_operators, register_operator, Operator
