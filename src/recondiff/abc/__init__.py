from .operator import (
    LinOp as LinOp,
    Map as Map,
    Operator as Operator,
)
