from .diff import (
    FiniteDiffMap as FiniteDiffMap,
    diff2d_adj as diff2d_adj,
    diff2d_forw as diff2d_forw,
    diff2d_map as diff2d_map,
    diff_map as diff_map,
    diffnd_adj as diffnd_adj,
    diffnd_forw as diffnd_forw,
    diffnd_map as diffnd_map,
    self_test as self_test,
)
