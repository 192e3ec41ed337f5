import collections.abc as cabc
import copy
import itertools
import typing as typ

import numpy as np
import numpy.random as npr
import pytest
import scipy.sparse.linalg as spsl

import recondiff.abc as rcda
import recondiff.info.deps as rcdd
import recondiff.info.ptype as rcdt
import recondiff.runtime as rcdrt
import recondiff.util as rcdu
import recondiff_tests.conftest as ct

# Naming conventions
# ------------------
#
# * data_<property>()
#       Return expected object of `op.<property>`.
#
# * test_<property>(op, ...):
#       Verify property values.
#
# * data_<method>(op, ...)
#       Return mappings of the form dict(in_=dict(), out=Any), where:
#         * in_ are kwargs to `op.<method>()`;
#         * out denotes the output of `op.method(**data[in_])`.
#
# * test_[value1D,valueND,backend,prec,precCM,transparent]_<method>(op, ...)
#       Verify that <method>, returns
#       * value1D: right output values for 1D inputs
#       * valueND: right output values for stacked inputs
#       * backend: right output type
#       * prec: input/output have same precision
#       * precCM: output respects context-manager choice
#       * transparent: referential-transparency, i.e. no side-effects.
#
# * test_math_<method>()
#       Verify mathematical identities involving <method>.
#
# * test_interface_[<method>]()
#       Verify objects have the right interface.
DataLike = cabc.Mapping[str, typ.Any]


class MapT(ct.DisableTestMixin):
    # Class Properties --------------------------------------------------------
    base = rcda.Map
    interface: cabc.Set[str] = frozenset(
        {
            "shape",
            "dim",
            "codim",
            "name",
            "apply",
            "__call__",
            "lipschitz",
        }
    )

    # Internal helpers --------------------------------------------------------
    @staticmethod
    def _random_array(
        shape: rcdt.NDArrayShape,
        seed: int = 0,
        xp: rcdt.ArrayModule = np,
        width: rcdrt.Width = rcdrt.Width.DOUBLE,
    ):
        rng = npr.default_rng(seed)
        x = rng.normal(size=shape)
        return xp.array(x, dtype=width.value)

    @staticmethod
    def _check_has_interface(op: rcda.Map, klass: "MapT"):
        # Verify `op` has the public interface of `klass`.
        assert klass.interface <= frozenset(dir(op))

    @classmethod
    def _metric(
        cls,
        a: rcdt.NDArray,
        b: rcdt.NDArray,
        as_dtype: rcdt.DType,
    ) -> bool:
        # Function used to assess if computed values are correct.
        # The default metric is point-wise match.
        return ct.allclose(a, b, as_dtype)

    @classmethod
    def _check_value1D(
        cls,
        func,
        data: DataLike,
        dtype: rcdt.DType = None,
    ):
        in_ = data["in_"]
        with rcdrt.EnforcePrecision(False):
            out = func(**in_)
        out_gt = data["out"]

        dtype = in_["arr"].dtype if (dtype is None) else dtype
        assert out.ndim == in_["arr"].ndim
        assert cls._metric(out, out_gt, as_dtype=dtype)

    @classmethod
    def _check_valueND(
        cls,
        func,
        data: DataLike,
        dtype: rcdt.DType = None,
    ):
        sh_extra = (2, 1, 3)  # prepend input/output shape by this amount.

        in_ = copy.copy(data["in_"])
        arr = in_["arr"]
        xp = rcdu.get_array_module(arr)
        arr = xp.broadcast_to(arr, (*sh_extra, *arr.shape))
        in_.update(arr=arr)
        with rcdrt.EnforcePrecision(False):
            out = func(**in_)
        out_gt = np.broadcast_to(data["out"], (*sh_extra, *data["out"].shape))

        dtype = arr.dtype if (dtype is None) else dtype
        assert out.ndim == arr.ndim
        assert cls._metric(out, out_gt, as_dtype=dtype)

    @staticmethod
    def _check_backend(func, data: DataLike):
        in_ = data["in_"]
        with rcdrt.EnforcePrecision(False):
            out = func(**in_)

        assert type(out) == type(in_["arr"])

    @staticmethod
    def _check_prec(func, data: DataLike):
        in_ = data["in_"]
        with rcdrt.EnforcePrecision(False):
            out = func(**in_)
            assert out.dtype == in_["arr"].dtype

    @staticmethod
    def _check_precCM(
        func,
        data: DataLike,
        widths: cabc.Collection[rcdrt.Width] = rcdrt.Width,
    ):
        stats = dict()
        for w in widths:
            with rcdrt.Precision(w):
                out = func(**data["in_"])
            stats[w] = out.dtype == w.value
        assert all(stats.values())

    @classmethod
    def _check_no_side_effect(cls, func, data: DataLike):
        # idea:
        # * eval func() on a private copy of the input [out_1]
        # * assert the input was not modified
        # * re-eval func() [out_2] and assert out_1 == out_2
        in_ = copy.deepcopy(data["in_"])
        arr_gt = rcdu.to_NUMPY(in_["arr"]).copy()

        with rcdrt.EnforcePrecision(False):
            out_1 = rcdu.to_NUMPY(func(**in_)).copy()
            assert np.array_equal(rcdu.to_NUMPY(in_["arr"]), arr_gt)
            out_2 = rcdu.to_NUMPY(func(**in_))
        assert np.array_equal(out_1, out_2)

    # Fixtures ----------------------------------------------------------------
    @pytest.fixture
    def spec(self) -> tuple[rcdt.OpT, rcdd.NDArrayInfo, rcdrt.Width]:
        # override in subclass to return:
        # * the operator to test;
        # * the backend of accepted input arrays;
        # * the precision of accepted input arrays.
        #
        # The triplet (op, backend, precision) must be provided since some operators may not be
        # backend/precision-agnostic.
        raise NotImplementedError

    @pytest.fixture
    def op(self, spec) -> rcdt.OpT:
        return spec[0]

    @pytest.fixture
    def ndi(self, spec) -> rcdd.NDArrayInfo:
        return spec[1]

    @pytest.fixture
    def xp(self, ndi) -> rcdt.ArrayModule:
        if (xp_ := ndi.module()) is not None:
            return xp_
        else:
            pytest.skip(f"{ndi} unsupported on this machine.")

    @pytest.fixture
    def width(self, spec) -> rcdrt.Width:
        return spec[2]

    @pytest.fixture
    def data_shape(self) -> rcdt.OpShape:
        # override in subclass with the shape of op.
        # Don't return `op.shape`: hard-code what you are expecting.
        raise NotImplementedError

    @pytest.fixture
    def data_apply(self) -> DataLike:
        # override in subclass with 1D input/outputs of op.apply().
        # Arrays should be NumPy-only. (Internal machinery will transform to different
        # backend/precisions as needed.)
        raise NotImplementedError

    @pytest.fixture
    def data_math_lipschitz(self) -> cabc.Collection[np.ndarray]:
        # override in subclass with at least 2 evaluation points for op.apply().
        # Used to verify if op.apply() satisfies the Lipschitz condition.
        raise NotImplementedError

    @pytest.fixture
    def _data_apply(self, data_apply, xp, width) -> DataLike:
        # Do not override in subclass: for internal use only to test `op.apply()`.
        # Outputs are left unchanged: different tests should transform them as required.
        in_ = copy.deepcopy(data_apply["in_"])
        in_.update(arr=xp.array(in_["arr"], dtype=width.value))
        data = dict(
            in_=in_,
            out=data_apply["out"],
        )
        return data

    # Tests -------------------------------------------------------------------
    def test_interface(self, op):
        self._skip_if_disabled()
        assert isinstance(op, self.base)
        self._check_has_interface(op, self.__class__)

    def test_shape(self, op, data_shape):
        self._skip_if_disabled()
        assert op.shape == data_shape

    def test_dim(self, op, data_shape):
        self._skip_if_disabled()
        assert op.dim == data_shape[1]

    def test_codim(self, op, data_shape):
        self._skip_if_disabled()
        assert op.codim == data_shape[0]

    def test_lipschitz(self, op, width):
        # Ensure:
        # * _lipschitz matches .lipschitz() after being called once.
        self._skip_if_disabled()
        L_computed = op.lipschitz()
        L_memoized = op._lipschitz
        assert ct.allclose(L_computed, L_memoized, as_dtype=width.value)

    def test_value1D_apply(self, op, _data_apply):
        self._skip_if_disabled()
        self._check_value1D(op.apply, _data_apply)

    def test_valueND_apply(self, op, _data_apply):
        self._skip_if_disabled()
        self._check_valueND(op.apply, _data_apply)

    def test_backend_apply(self, op, _data_apply):
        self._skip_if_disabled()
        self._check_backend(op.apply, _data_apply)

    def test_prec_apply(self, op, _data_apply):
        self._skip_if_disabled()
        self._check_prec(op.apply, _data_apply)

    def test_precCM_apply(self, op, _data_apply):
        self._skip_if_disabled()
        self._check_precCM(op.apply, _data_apply)

    def test_transparent_apply(self, op, _data_apply):
        self._skip_if_disabled()
        self._check_no_side_effect(op.apply, _data_apply)

    def test_value1D_call(self, op, _data_apply):
        self._skip_if_disabled()
        self._check_value1D(op.__call__, _data_apply)

    def test_valueND_call(self, op, _data_apply):
        self._skip_if_disabled()
        self._check_valueND(op.__call__, _data_apply)

    def test_backend_call(self, op, _data_apply):
        self._skip_if_disabled()
        self._check_backend(op.__call__, _data_apply)

    def test_math_lipschitz(
        self,
        op,
        xp,
        width,
        data_math_lipschitz,
    ):
        # \norm{f(x) - f(y)}{2} \le L * \norm{x - y}{2}
        self._skip_if_disabled()
        with rcdrt.EnforcePrecision(False):
            L = op.lipschitz()

            data = xp.array(data_math_lipschitz, dtype=width.value)
            data = list(itertools.combinations(data, 2))
            x = xp.stack([_[0] for _ in data], axis=0)
            y = xp.stack([_[1] for _ in data], axis=0)

            lhs = xp.linalg.norm(op.apply(x) - op.apply(y), axis=-1)
            rhs = L * xp.linalg.norm(x - y, axis=-1)
            success = ct.less_equal(lhs, rhs, as_dtype=width.value)
            assert all(success)


class LinOpT(MapT):
    # Class Properties --------------------------------------------------------
    base = rcda.LinOp
    interface = frozenset(
        MapT.interface
        | {
            "adjoint",
            "asarray",
            "cogram",
            "gram",
            "svdvals",
            "T",
            "transpose",
            "to_sciop",
        }
    )

    # Internal helpers --------------------------------------------------------
    @staticmethod
    def _skip_unless_NUMPY_CUPY(xp, gpu):
        N = rcdd.NDArrayInfo
        xp_ = N.from_flag(gpu).module()
        if xp != xp_:
            pytest.skip("Only NUMPY/CUPY backends supported.")

    # Fixtures ----------------------------------------------------------------
    @pytest.fixture
    def data_adjoint(self, op) -> DataLike:
        # override in subclass with 1D input/outputs of op.adjoint().
        # Arrays should be NumPy-only. (Internal machinery will transform to different
        # backend/precisions as needed.)
        #
        # Default implementation just tests A(0) = 0. Subsequent math tests ensure .adjoint() output
        # is consistent with .apply().
        return dict(
            in_=dict(arr=np.zeros(op.codim)),
            out=np.zeros(op.dim),
        )

    @pytest.fixture
    def _data_adjoint(self, data_adjoint, xp, width) -> DataLike:
        # Do not override in subclass: for internal use only to test `op.adjoint()`.
        in_ = copy.deepcopy(data_adjoint["in_"])
        in_.update(arr=xp.array(in_["arr"], dtype=width.value))
        data = dict(
            in_=in_,
            out=data_adjoint["out"],
        )
        return data

    @pytest.fixture
    def data_math_lipschitz(self, op) -> cabc.Collection[np.ndarray]:
        N_test = 5
        return self._random_array((N_test, op.dim))

    @pytest.fixture
    def _op_svd(self, op) -> np.ndarray:
        # compute all singular values, sorted in ascending order.
        D = np.linalg.svd(
            op.asarray(),
            full_matrices=False,
            compute_uv=False,
        )
        return np.sort(D)

    @pytest.fixture
    def _op_T(self, op) -> rcda.LinOp:
        return op.T

    @pytest.fixture(
        params=[
            False,
            pytest.param(
                True,
                marks=pytest.mark.skipif(
                    not rcdd.CUPY_ENABLED,
                    reason="GPU unsupported on this machine.",
                ),
            ),
        ]
    )
    def _gpu(self, request) -> bool:
        # Do not override in subclass: for use only to test methods taking a `gpu` parameter.
        return request.param

    @pytest.fixture
    def _op_array(self, op, xp, width) -> np.ndarray:
        # Ground-truth array which should be returned by .asarray()
        A_gt = np.zeros((op.codim, op.dim), dtype=width.value)
        for i in range(op.dim):
            e = xp.zeros((op.dim,), dtype=width.value)
            e[i] = 1
            with rcdrt.EnforcePrecision(False):
                A_gt[:, i] = rcdu.to_NUMPY(op.apply(e))
        return A_gt

    @pytest.fixture(
        params=[
            "matvec",
            "matmat",
            "rmatvec",
            "rmatmat",
        ]
    )
    def _data_to_sciop(self, op, xp, width, _gpu, request) -> DataLike:
        # Do not override in subclass: for internal use only to test `op.to_sciop()`.
        self._skip_unless_NUMPY_CUPY(xp, _gpu)
        N_test = 7
        f = lambda _: self._random_array(_, xp=xp, width=width)
        op_array = op.asarray(xp=xp, dtype=width.value)
        mode = request.param
        if mode == "matvec":
            arr = f((op.dim,))
            out_gt = op_array @ arr
            var = "x"
        elif mode == "matmat":
            arr = f((op.dim, N_test))
            out_gt = op_array @ arr
            var = "X"
        elif mode == "rmatvec":
            arr = f((op.codim,))
            out_gt = op_array.T @ arr
            var = "x"
        elif mode == "rmatmat":
            arr = f((op.codim, N_test))
            out_gt = op_array.T @ arr
            var = "X"
        return dict(
            in_={var: arr},
            out=out_gt,
            mode=mode,  # for test_xxx_sciop()
        )

    # Tests -------------------------------------------------------------------
    def test_value1D_adjoint(self, op, _data_adjoint):
        self._skip_if_disabled()
        self._check_value1D(op.adjoint, _data_adjoint)

    def test_valueND_adjoint(self, op, _data_adjoint):
        self._skip_if_disabled()
        self._check_valueND(op.adjoint, _data_adjoint)

    def test_backend_adjoint(self, op, _data_adjoint):
        self._skip_if_disabled()
        self._check_backend(op.adjoint, _data_adjoint)

    def test_prec_adjoint(self, op, _data_adjoint):
        self._skip_if_disabled()
        self._check_prec(op.adjoint, _data_adjoint)

    def test_precCM_adjoint(self, op, _data_adjoint):
        self._skip_if_disabled()
        self._check_precCM(op.adjoint, _data_adjoint)

    def test_transparent_adjoint(self, op, _data_adjoint):
        self._skip_if_disabled()
        self._check_no_side_effect(op.adjoint, _data_adjoint)

    def test_math_adjoint(self, op, xp, width):
        # <op.adjoint(x), y> = <x, op.apply(y)>
        self._skip_if_disabled()
        N = 20
        x = self._random_array((N, op.codim), xp=xp, width=width)
        y = self._random_array((N, op.dim), xp=xp, width=width)
        ip = lambda a, b: (a * b).sum(axis=-1)  # (N, Q) * (N, Q) -> (N,)
        with rcdrt.EnforcePrecision(False):
            lhs = ip(op.adjoint(x), y)
            rhs = ip(x, op.apply(y))
        assert self._metric(lhs, rhs, as_dtype=width.value)

    def test_math2_lipschitz(self, op, _op_svd, width):
        # op.lipschitz(recompute=True) computes the optimal Lipschitz constant.
        self._skip_if_disabled()
        L = op.lipschitz(recompute=True)
        cast = lambda x: np.array([x], dtype=width.value)
        assert ct.allclose(cast(L), cast(_op_svd.max()), as_dtype=rcdrt.Width.SINGLE.value)

    def test_value1D_svdvals(self, op, xp, _gpu, _op_svd):
        # svdvals() outputs are assessed at FP32-precision only.
        self._skip_if_disabled()
        self._skip_unless_NUMPY_CUPY(xp, _gpu)
        D = rcdu.to_NUMPY(op.svdvals(k=1, which="LM", gpu=_gpu))
        assert D.size == 1
        assert ct.allclose(D, _op_svd[-1:], as_dtype=rcdrt.Width.SINGLE.value)

    def test_backend_svdvals(self, op, xp, _gpu):
        self._skip_if_disabled()
        self._skip_unless_NUMPY_CUPY(xp, _gpu)
        out = op.svdvals(k=1, gpu=_gpu)
        assert rcdu.get_array_module(out) == rcdd.NDArrayInfo.from_flag(_gpu).module()

    def test_precCM_svdvals(self, op, xp, _gpu, width):
        self._skip_if_disabled()
        self._skip_unless_NUMPY_CUPY(xp, _gpu)
        data = dict(in_=dict(k=1, gpu=_gpu))
        self._check_precCM(op.svdvals, data, (width,))

    def test_interface_T(self, op, _op_T):
        self._skip_if_disabled()
        self._check_has_interface(_op_T, LinOpT)
        assert _op_T.shape == (op.dim, op.codim)
        assert _op_T.name == op.name

    def test_interface_TT(self, op, _op_T):
        # Transposing twice returns operator with initial shape.
        self._skip_if_disabled()
        assert _op_T.T.shape == op.shape

    def test_value1D_apply_T(self, _op_T, _data_adjoint):
        self._skip_if_disabled()
        self._check_value1D(_op_T.apply, _data_adjoint)

    def test_valueND_apply_T(self, _op_T, _data_adjoint):
        self._skip_if_disabled()
        self._check_valueND(_op_T.apply, _data_adjoint)

    def test_value1D_call_T(self, _op_T, _data_adjoint):
        self._skip_if_disabled()
        self._check_value1D(_op_T.__call__, _data_adjoint)

    def test_value1D_adjoint_T(self, _op_T, _data_apply):
        self._skip_if_disabled()
        self._check_value1D(_op_T.adjoint, _data_apply)

    def test_precCM_apply_T(self, _op_T, _data_adjoint):
        self._skip_if_disabled()
        self._check_precCM(_op_T.apply, _data_adjoint)

    def test_value_asarray(self, op, xp, width, _op_array):
        self._skip_if_disabled()
        A = op.asarray(xp=xp, dtype=width.value)
        assert ct.allclose(A, _op_array, as_dtype=width.value)

    def test_backend_asarray(self, op, xp, width):
        self._skip_if_disabled()
        A = op.asarray(xp=xp, dtype=width.value)
        assert rcdu.get_array_module(A) is xp

    def test_prec_asarray(self, op, xp, width):
        self._skip_if_disabled()
        A = op.asarray(xp=xp, dtype=width.value)
        assert A.dtype == width.value

    def test_value_array(self, op, width, _op_array):
        # np.asarray(op) goes through the __array__ protocol.
        self._skip_if_disabled()
        A = np.asarray(op, dtype=width.value)
        assert isinstance(A, np.ndarray)
        assert ct.allclose(A, _op_array, as_dtype=width.value)

    def test_value_to_sciop(self, op, _data_to_sciop, width, _gpu):
        self._skip_if_disabled()
        A = op.to_sciop(dtype=width.value, gpu=_gpu)
        assert isinstance(A, spsl.LinearOperator) or _gpu
        func = getattr(A, _data_to_sciop["mode"])
        out = func(**_data_to_sciop["in_"])
        assert ct.allclose(out, _data_to_sciop["out"], as_dtype=width.value)

    def test_math_gram(self, op, xp, width):
        # op.gram() == op.adjoint(op.apply())
        self._skip_if_disabled()
        G = op.gram()
        x = self._random_array((5, op.dim), xp=xp, width=width)
        with rcdrt.EnforcePrecision(False):
            out = G.apply(x)
            out_gt = op.adjoint(op.apply(x))
        assert G.shape == (op.dim, op.dim)
        assert self._metric(out, out_gt, as_dtype=width.value)

    def test_math_cogram(self, op, xp, width):
        # op.cogram() == op.apply(op.adjoint())
        self._skip_if_disabled()
        CG = op.cogram()
        x = self._random_array((5, op.codim), xp=xp, width=width)
        with rcdrt.EnforcePrecision(False):
            out = CG.apply(x)
            out_gt = op.apply(op.adjoint(x))
        assert CG.shape == (op.codim, op.codim)
        assert self._metric(out, out_gt, as_dtype=width.value)
