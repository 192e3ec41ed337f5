import types
import warnings

import numpy as np
import scipy.sparse.linalg as spsl

import recondiff.info.deps as rcdd
import recondiff.info.ptype as rcdt
import recondiff.info.warning as rcdw
import recondiff.runtime as rcdrt
import recondiff.util as rcdu

__all__ = [
    "Operator",
    "Map",
    "LinOp",
]


class Operator:
    """
    Abstract Base Class for recondiff operators.

    Goals:

    * expose the (codim, dim) shape of the map, as well as a human-readable name.
    """

    def __init__(self, shape: rcdt.OpShape):
        r"""
        Parameters
        ----------
        shape: OpShape
            (N, M) operator shape.
        """
        assert len(shape) == 2, f"shape: expected {rcdt.OpShape}, got {shape}."
        self._shape = tuple(map(int, shape))
        self._name = self.__class__.__name__

    # Public Interface --------------------------------------------------------
    @property
    def shape(self) -> rcdt.OpShape:
        r"""
        Return (N, M) operator shape.
        """
        return self._shape

    @property
    def dim(self) -> int:
        r"""
        Return dimension of operator's domain. (M)
        """
        return self.shape[1]

    @property
    def codim(self) -> int:
        r"""
        Return dimension of operator's co-domain. (N)
        """
        return self.shape[0]

    @property
    def name(self) -> str:
        """
        Identifier of the operator.
        """
        return self._name

    def __repr__(self) -> str:
        klass = self.__class__.__name__
        return f"{klass}{self.shape}"


class Map(Operator):
    r"""
    Base class for maps :math:`\mathbf{M}:\mathbb{R}^M\to \mathbb{R}^N`.

    Instances of this class must implement :py:meth:`~recondiff.abc.operator.Map.apply`.

    If the map is Lipschitz-continuous with known Lipschitz constant, the latter should be stored in the private
    instance attribute ``_lipschitz`` (initialized to :math:`+\infty` by default).
    """

    def __init__(self, shape: rcdt.OpShape):
        super().__init__(shape=shape)
        self._lipschitz = np.inf

    def apply(self, arr: rcdt.NDArray) -> rcdt.NDArray:
        """
        Evaluate operator at specified point(s).

        Parameters
        ----------
        arr: NDArray
            (..., M) input points.

        Returns
        -------
        out: NDArray
            (..., N) output points.
        """
        raise NotImplementedError

    def __call__(self, arr: rcdt.NDArray) -> rcdt.NDArray:
        """
        Alias for :py:meth:`~recondiff.abc.operator.Map.apply`.
        """
        return self.apply(arr)

    def lipschitz(self, **kwargs) -> rcdt.Real:
        r"""
        Compute a Lipschitz constant of the operator.

        Notes
        -----
        * This method should always be callable without specifying any kwargs.

        * A constant :math:`L_\mathbf{h}>0` is said to be a *Lipschitz constant* for a map
          :math:`\mathbf{h}:\mathbb{R}^M\to \mathbb{R}^N` if:

          .. math::

             \|\mathbf{h}(\mathbf{x})-\mathbf{h}(\mathbf{y})\|_{\mathbb{R}^N}
             \leq
             L_\mathbf{h} \|\mathbf{x}-\mathbf{y}\|_{\mathbb{R}^M},
             \qquad
             \forall \mathbf{x}, \mathbf{y}\in \mathbb{R}^M.

          The smallest Lipschitz constant of a map is called the *optimal Lipschitz constant*.
        """
        return self._lipschitz


class LinOp(Map):
    r"""
    Base class for linear operators :math:`L:\mathbb{R}^M\to\mathbb{R}^N`.

    Instances of this class must implement :py:meth:`~recondiff.abc.operator.Map.apply` and
    :py:meth:`~recondiff.abc.operator.LinOp.adjoint`.

    If known, the Lipschitz constant of the linear map should be stored in the attribute ``_lipschitz`` (initialized
    to :math:`+\infty` by default).
    """

    def adjoint(self, arr: rcdt.NDArray) -> rcdt.NDArray:
        r"""
        Evaluate operator adjoint at specified point(s).

        Parameters
        ----------
        arr: NDArray
            (..., N) input points.

        Returns
        -------
        out: NDArray
            (..., M) adjoint evaluations.

        Notes
        -----
        The *adjoint* :math:`\mathbf{L}^\ast:\mathbb{R}^N\to \mathbb{R}^M` of a linear operator
        :math:`\mathbf{L}:\mathbb{R}^M\to \mathbb{R}^N` is defined as:

        .. math::

           \langle \mathbf{x}, \mathbf{L}^\ast\mathbf{y}\rangle_{\mathbb{R}^M}
           :=
           \langle \mathbf{L}\mathbf{x}, \mathbf{y}\rangle_{\mathbb{R}^N},
           \qquad
           \forall (\mathbf{x},\mathbf{y})\in \mathbb{R}^M \times \mathbb{R}^N.
        """
        raise NotImplementedError

    @property
    def T(self) -> rcdt.OpT:
        r"""
        Return the (M, N) adjoint of the linear operator.

        See Also
        --------
        :py:meth:`~recondiff.abc.operator.LinOp.transpose`
        """
        return self.transpose()

    def transpose(self) -> rcdt.OpT:
        r"""
        Return the (M, N) adjoint of the linear operator.

        The adjoint's :py:meth:`apply` is the encapsulated operator's :py:meth:`adjoint`, and vice-versa.
        Its matrix form is obtained by evaluating :py:meth:`adjoint`, not by transposing the encapsulated operator's
        :py:meth:`asarray`.

        See Also
        --------
        :py:meth:`~recondiff.abc.operator.LinOp.T`
        """
        opT = LinOp(shape=(self.dim, self.codim))
        opT._op = self  # embed for introspection
        opT._name = self.name
        opT._lipschitz = self._lipschitz

        opT.apply = self.adjoint
        opT.adjoint = self.apply
        opT.gram = self.cogram
        opT.cogram = self.gram
        return opT

    def to_sciop(
        self,
        dtype: rcdt.DType = None,
        gpu: bool = False,
    ) -> spsl.LinearOperator:
        r"""
        Cast a :py:class:`~recondiff.abc.operator.LinOp` to a :py:class:`scipy.sparse.linalg.LinearOperator`,
        compatible with the matrix-free linear algebra routines of :py:mod:`scipy.sparse.linalg`.

        Parameters
        ----------
        dtype: DType
            Working precision of the linear operator.
        gpu: bool
            Operate on CuPy inputs (True) vs. NumPy inputs (False).

        Returns
        -------
        op: [cupyx.]scipy.sparse.linalg.LinearOperator
            Linear operator object compliant with SciPy's interface.
        """

        def matmat(arr):
            with rcdrt.EnforcePrecision(False):
                out = self.apply(arr.T)
            return out.reshape(*arr.shape[1:], self.codim).T

        def rmatmat(arr):
            with rcdrt.EnforcePrecision(False):
                out = self.adjoint(arr.T)
            return out.reshape(*arr.shape[1:], self.dim).T

        if dtype is None:
            dtype = rcdrt.getPrecision().value

        if gpu:
            assert rcdd.CUPY_ENABLED
        spx = rcdd.SparseArrayInfo.from_flag(gpu).module(linalg=True)
        return spx.LinearOperator(
            shape=self.shape,
            matvec=matmat,
            rmatvec=rmatmat,
            matmat=matmat,
            rmatmat=rmatmat,
            dtype=dtype,
        )

    def lipschitz(
        self,
        recompute: bool = False,
        **kwargs,
    ) -> rcdt.Real:
        r"""
        Return a (not necessarily optimal) Lipschitz constant of the operator.

        Parameters
        ----------
        recompute: bool
            If ``True``, forces re-estimation of the Lipschitz constant.
            If ``False``, use the last-computed Lipschitz constant.
        kwargs:
            Optional kwargs passed on to :py:meth:`~recondiff.abc.operator.LinOp.svdvals`.

        Returns
        -------
        L : Real
            Value of the Lipschitz constant.

        Notes
        -----
        The tightest Lipschitz constant is given by the spectral norm of the operator :math:`L`: :math:`\|L\|_2`.
        It is estimated via the largest singular value of :math:`L`.
        """
        if recompute or (self._lipschitz == np.inf):
            kwargs.update(k=1, which="LM")
            self._lipschitz = self.svdvals(**kwargs).item()
        return self._lipschitz

    def svdvals(
        self,
        k: int,
        which: str = "LM",
        gpu: bool = False,
        **kwargs,
    ) -> rcdt.NDArray:
        r"""
        Compute the ``k`` largest or smallest singular values of the linear operator.

        Parameters
        ----------
        k: int
            Number of singular values to compute.
        which: 'LM' | 'SM'
            Which k singular values to find:

                * 'LM' : largest magnitude
                * 'SM' : smallest magnitude
        gpu: bool
            If ``True`` the singular value decomposition is performed on the GPU.
        kwargs:
            Additional kwargs accepted by :py:func:`scipy.sparse.linalg.svds`.

        Returns
        -------
        D: NDArray
            (k,) singular values in ascending order.
        """
        width = rcdrt.getPrecision()

        def _dense_eval():
            if gpu:
                import cupy as xp
                import cupy.linalg as spx
            else:
                import numpy as xp
                import scipy.linalg as spx
            op = self.asarray(xp=xp, dtype=width.value)
            return spx.svd(op, compute_uv=False)

        def _sparse_eval():
            spx = rcdd.SparseArrayInfo.from_flag(gpu).module(linalg=True)
            if gpu:
                msg = "Sparse GPU-evaluation of svdvals() is known to produce incorrect results."
                warnings.warn(msg, rcdw.BackendWarning)
            op = self.to_sciop(gpu=gpu, dtype=width.value)
            kwargs.update(
                k=k,
                which=which,
                return_singular_vectors=False,
            )
            return spx.svds(op, **kwargs)

        if k >= min(self.shape) // 2:
            msg = "Too many svdvals wanted: using matrix-based ops."
            warnings.warn(msg, rcdw.DenseWarning)
            D = _dense_eval()
        else:
            D = _sparse_eval()

        # Filter to k largest/smallest magnitude + sorted
        xp = rcdu.get_array_module(D)
        D = D[xp.argsort(D)]
        return D[:k] if (which == "SM") else D[-k:]

    def asarray(
        self,
        xp: rcdt.ArrayModule = np,
        dtype: rcdt.DType = None,
    ) -> rcdt.NDArray:
        r"""
        Matrix representation of the linear operator.

        Parameters
        ----------
        xp: ArrayModule
            Which array module to use to represent the output.
        dtype: DType
            Optional type of the array.

        Returns
        -------
        A: NDArray
            (codim, dim) array-representation of the operator.

        Note
        ----
        This generic implementation evaluates :py:meth:`apply` on the canonical basis of the domain.
        """
        if dtype is None:
            dtype = rcdrt.getPrecision().value
        with rcdrt.EnforcePrecision(False):
            E = xp.eye(self.dim, dtype=dtype)
            A = self.apply(E).reshape(self.dim, self.codim).T
        return A

    def __array__(self, dtype: rcdt.DType = None, copy: bool = None) -> np.ndarray:
        r"""
        Coerce linear operator to a :py:class:`numpy.ndarray`.

        Parameters
        ----------
        dtype: DType
            Optional type of the array.

        Returns
        -------
        A : numpy.ndarray
            (codim, dim) representation of the linear operator, stored as a NumPy array.

        Notes
        -----
        Functions like ``np.array`` or  ``np.asarray`` will check for the existence of the ``__array__`` protocol to
        know how to coerce the custom object fed as input into an array.
        """
        return self.asarray(xp=np, dtype=dtype)

    def gram(self) -> rcdt.OpT:
        r"""
        Gram operator :math:`L^\ast L:\mathbb{R}^M\to \mathbb{R}^M`.

        Returns
        -------
        op: OpT
            (M, M) self-adjoint operator.
        """

        def op_apply(_, arr: rcdt.NDArray) -> rcdt.NDArray:
            return self.adjoint(self.apply(arr))

        op = LinOp(shape=(self.dim, self.dim))
        op._name = f"{self.name}.gram"
        op._lipschitz = self._lipschitz**2
        op.apply = types.MethodType(op_apply, op)
        op.adjoint = op.apply
        return op

    def cogram(self) -> rcdt.OpT:
        r"""
        Co-Gram operator :math:`LL^\ast:\mathbb{R}^N\to \mathbb{R}^N`.

        Returns
        -------
        op: OpT
            (N, N) self-adjoint operator.
        """

        def op_apply(_, arr: rcdt.NDArray) -> rcdt.NDArray:
            return self.apply(self.adjoint(arr))

        op = LinOp(shape=(self.codim, self.codim))
        op._name = f"{self.name}.cogram"
        op._lipschitz = self._lipschitz**2
        op.apply = types.MethodType(op_apply, op)
        op.adjoint = op.apply
        return op
