"""
H2 Kernels Module

Common kernel functions for compressed interaction matrices.

Every kernel is called as ``K(dx, x_a, x_b)`` where ``x_a`` is the target
point, ``x_b`` the source point and ``dx = x_b - x_a``. Arguments are numpy
arrays of shape (..., D) that broadcast against each other; the result has
the broadcast shape without the last axis.
"""

import numpy as np
from typing import Callable
from abc import ABC, abstractmethod


class Kernel(ABC):
    """Abstract base class for kernel functions."""

    @abstractmethod
    def __call__(self, dx: np.ndarray, x_a: np.ndarray, x_b: np.ndarray) -> np.ndarray:
        """
        Evaluate kernel K(dx, x_a, x_b).

        Args:
            dx: Displacements x_b - x_a (..., D)
            x_a: Target point coordinates (..., D)
            x_b: Source point coordinates (..., D)

        Returns:
            Kernel values (...)
        """
        pass


class RadialKernel(Kernel):
    """Kernel depending only on the Euclidean length of ``dx``."""

    def __call__(self, dx: np.ndarray, x_a: np.ndarray, x_b: np.ndarray) -> np.ndarray:
        r = np.sqrt(np.sum(np.asarray(dx) ** 2, axis=-1))
        return self.profile(r)

    @abstractmethod
    def profile(self, r: np.ndarray) -> np.ndarray:
        """Kernel value as a function of distance."""
        pass


class GaussianKernel(RadialKernel):
    """
    Gaussian kernel.

    K(r) = exp(-r^2 / sigma^2)
    """

    def __init__(self, sigma: float = 1.0):
        if sigma <= 0:
            raise ValueError("Sigma must be positive")
        self.sigma = sigma

    def profile(self, r: np.ndarray) -> np.ndarray:
        return np.exp(-(r / self.sigma) ** 2)


class MultiquadricKernel(RadialKernel):
    """
    Multiquadric kernel.

    K(r) = sqrt(r^2 + c)
    """

    def __init__(self, c: float = 0.01):
        if c < 0:
            raise ValueError("Shape parameter c must be non-negative")
        self.c = c

    def profile(self, r: np.ndarray) -> np.ndarray:
        return np.sqrt(r ** 2 + self.c)


class InverseMultiquadricKernel(RadialKernel):
    """
    Inverse multiquadric kernel.

    K(r) = 1 / sqrt(r^2 + c)
    """

    def __init__(self, c: float = 0.01):
        if c <= 0:
            raise ValueError("Shape parameter c must be positive")
        self.c = c

    def profile(self, r: np.ndarray) -> np.ndarray:
        return 1.0 / np.sqrt(r ** 2 + self.c)


class ExponentialKernel(RadialKernel):
    """
    Exponential (Matern 1/2) kernel, symmetric positive definite.

    K(r) = exp(-r / scale)
    """

    def __init__(self, scale: float = 1.0):
        if scale <= 0:
            raise ValueError("Scale must be positive")
        self.scale = scale

    def profile(self, r: np.ndarray) -> np.ndarray:
        return np.exp(-r / self.scale)


class LaplaceKernel(RadialKernel):
    """
    Regularised Laplace kernel (Green's function for Laplace equation).

    G(r) = -1/(2*pi) * log(sqrt(r^2 + eps^2))    in 2D
    G(r) = 1/(4*pi*sqrt(r^2 + eps^2))            in 3D
    """

    def __init__(self, dimension: int = 2, epsilon: float = 1e-3):
        """
        Initialize Laplace kernel.

        Args:
            dimension: Spatial dimension (2 or 3)
            epsilon: Smoothing length removing the singularity at r = 0
        """
        if dimension not in [2, 3]:
            raise ValueError("Dimension must be 2 or 3")
        if epsilon <= 0:
            raise ValueError("Epsilon must be positive")
        self.dimension = dimension
        self.epsilon = epsilon

    def profile(self, r: np.ndarray) -> np.ndarray:
        rho = np.sqrt(r ** 2 + self.epsilon ** 2)
        if self.dimension == 2:
            return -np.log(rho) / (2 * np.pi)
        return 1.0 / (4 * np.pi * rho)


class FunctionKernel(Kernel):
    """
    Kernel wrapping a user callable ``func(dx, x_a, x_b)``.

    A vectorized callable receives whole arrays. Otherwise the callable is
    evaluated once per point pair on (D,) vectors and must return a scalar.
    """

    def __init__(self, func: Callable, vectorized: bool = True):
        self.func = func
        self.vectorized = vectorized

    def __call__(self, dx: np.ndarray, x_a: np.ndarray, x_b: np.ndarray) -> np.ndarray:
        if self.vectorized:
            return np.asarray(self.func(dx, x_a, x_b), dtype=np.float64)

        dx, x_a, x_b = np.broadcast_arrays(dx, x_a, x_b)
        shape = dx.shape[:-1]
        dim = dx.shape[-1]
        flat = zip(dx.reshape(-1, dim), x_a.reshape(-1, dim), x_b.reshape(-1, dim))
        values = np.fromiter((self.func(d, a, b) for d, a, b in flat),
                             dtype=np.float64, count=int(np.prod(shape)))
        return values.reshape(shape)


def as_kernel(func: Callable, vectorized: bool = True) -> Kernel:
    """Return ``func`` unchanged if it is a Kernel, else wrap it."""
    if isinstance(func, Kernel):
        return func
    return FunctionKernel(func, vectorized)


def create_kernel(name: str, **kwargs) -> Kernel:
    """
    Factory function to create kernel instances.

    Args:
        name: Kernel type name ('gaussian', 'multiquadric',
              'inverse_multiquadric', 'exponential', 'laplace')
        **kwargs: Kernel-specific parameters

    Returns:
        Kernel instance
    """
    name = name.lower()

    if name == 'gaussian':
        return GaussianKernel(kwargs.get('sigma', 1.0))
    elif name == 'multiquadric':
        return MultiquadricKernel(kwargs.get('c', 0.01))
    elif name == 'inverse_multiquadric':
        return InverseMultiquadricKernel(kwargs.get('c', 0.01))
    elif name == 'exponential':
        return ExponentialKernel(kwargs.get('scale', 1.0))
    elif name == 'laplace':
        dimension = kwargs.get('dimension', 2)
        epsilon = kwargs.get('epsilon', 1e-3)
        return LaplaceKernel(dimension, epsilon)
    else:
        raise ValueError(f"Unknown kernel type: {name}")


__all__ = [
    'Kernel',
    'RadialKernel',
    'GaussianKernel',
    'MultiquadricKernel',
    'InverseMultiquadricKernel',
    'ExponentialKernel',
    'LaplaceKernel',
    'FunctionKernel',
    'as_kernel',
    'create_kernel',
]
