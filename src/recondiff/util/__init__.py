from .array_module import (
    compute as compute,
    get_array_module as get_array_module,
    to_NUMPY as to_NUMPY,
)
from .misc import (
    parse_params as parse_params,
)
from .operator import (
    as_canonical_axes as as_canonical_axes,
    as_canonical_shape as as_canonical_shape,
)
