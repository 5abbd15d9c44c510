"""
GPU Shader Loader - loads, specialises and compiles kernel programs.

Each kernel lives in its own WGSL file named after its entry point.
Workgroup sizes are substituted into the source (``${WORKGROUP_SIZE}``)
before compilation, since WGSL needs them as constants.

On the reference device "compiling" resolves each entry point to its NumPy
kernel. Either way a failure raises CompileError carrying the build log.
"""

import os
from string import Template
from typing import Any, Callable, Dict, Iterable, Optional, Tuple

from .errors import CompileError
from .logger import get_logger

logger = get_logger(__name__)

# Shader directory
SHADER_DIR = os.path.join(os.path.dirname(__file__), "shaders")


class ShaderLoader:
    """
    On-demand WGSL shader compiler for one wgpu device.
    Compiled modules are cached per shader and substitution values, and live
    only as long as the loader (and the Program holding it).
    """

    def __init__(self, wgpu_device: Any) -> None:
        self.wgpu_device = wgpu_device
        self._modules: Dict[Tuple[str, Tuple[Tuple[str, Any], ...]], Any] = {}

    def __len__(self) -> int:
        return len(self._modules)

    @classmethod
    def source(cls, shader_name: str, defines: Optional[Dict[str, Any]] = None) -> str:
        """
        Read a shader and substitute its ``${NAME}`` placeholders.

        Raises:
            CompileError: if the file is missing or a placeholder has no value.
        """
        path = cls.get_shader_path(shader_name)

        if not os.path.exists(path):
            raise CompileError(f"Shader not found: {path}", kernel_name=shader_name)

        with open(path, "r") as f:
            code = f.read()

        try:
            return Template(code).substitute({k: str(v) for k, v in (defines or {}).items()})
        except (KeyError, ValueError) as e:
            raise CompileError(
                f"Shader {shader_name} has an unresolved placeholder: {e}",
                kernel_name=shader_name,
                build_log=str(e),
                original_error=e,
            ) from e

    def load(self, shader_name: str, defines: Optional[Dict[str, Any]] = None) -> Any:
        """
        Load and compile a shader by name.

        Args:
            shader_name: Name of the shader file (without .wgsl extension)
            defines: Placeholder values

        Returns:
            Compiled wgpu shader module
        """
        key = (shader_name, tuple(sorted((defines or {}).items())))
        if key in self._modules:
            return self._modules[key]

        code = self.source(shader_name, defines)

        try:
            module = self.wgpu_device.create_shader_module(code=code, label=shader_name)
        except Exception as e:
            raise CompileError(
                f"Failed to compile shader {shader_name}",
                kernel_name=shader_name,
                build_log=str(e),
                original_error=e,
            ) from e

        self._modules[key] = module
        logger.debug(f"Compiled shader: {shader_name}")
        return module

    @classmethod
    def get_shader_path(cls, shader_name: str) -> str:
        """Get the full path to a shader file."""
        return os.path.join(SHADER_DIR, f"{shader_name}.wgsl")

    @classmethod
    def shader_exists(cls, shader_name: str) -> bool:
        """Check if a shader file exists."""
        return os.path.exists(cls.get_shader_path(shader_name))


class Kernel:
    """
    A compiled kernel entry point.

    Holds the NumPy function on the reference device, or the compute
    pipeline on wgpu devices.
    """

    def __init__(self, entry_point: str, function: Optional[Callable] = None,
                 pipeline: Optional[Any] = None) -> None:
        self.entry_point = entry_point
        self.function = function
        self.pipeline = pipeline

    def __repr__(self) -> str:
        return f"Kernel({self.entry_point!r})"


class Program:
    """The set of kernels built for one device."""

    def __init__(self, device, kernels: Dict[str, Kernel], loader: Optional[ShaderLoader] = None) -> None:
        self.device = device
        self.kernels = kernels
        # Shader modules compiled for this program (wgpu only)
        self.loader = loader

    def __getitem__(self, entry_point: str) -> Kernel:
        return self.kernels[entry_point]

    def __contains__(self, entry_point: str) -> bool:
        return entry_point in self.kernels

    @property
    def entry_points(self) -> Tuple[str, ...]:
        return tuple(self.kernels)


def build_program(device, entry_points: Iterable[str], workgroup_size: int) -> Program:
    """
    Build every kernel of a program for a device.

    Raises:
        CompileError: with the backend's build log, which is also logged
            before the error propagates.
    """
    loader = ShaderLoader(device.wgpu_device) if device.is_wgpu else None
    kernels = {}
    try:
        for entry_point in entry_points:
            kernels[entry_point] = _build_kernel(device, loader, entry_point, workgroup_size)
    except CompileError as e:
        logger.error("Build status: failed (%s)", e.kernel_name or "program")
        logger.error("Build options: WORKGROUP_SIZE=%d", workgroup_size)
        logger.error("Build log:\n%s", e.build_log or "<empty>")
        raise

    logger.debug("Built program with %d kernels for %s", len(kernels), device.name)
    return Program(device, kernels, loader)


def _build_kernel(device, loader, entry_point: str, workgroup_size: int) -> Kernel:
    if device.is_wgpu:
        module = loader.load(entry_point, {"WORKGROUP_SIZE": workgroup_size})
        try:
            pipeline = device.wgpu_device.create_compute_pipeline(
                layout="auto",
                compute={"module": module, "entry_point": entry_point},
            )
        except Exception as e:
            raise CompileError(
                f"Failed to create compute pipeline for {entry_point}",
                kernel_name=entry_point,
                build_log=str(e),
                original_error=e,
            ) from e
        return Kernel(entry_point, pipeline=pipeline)

    from hist_equalizer.processing.kernels import KERNELS

    if entry_point not in KERNELS:
        raise CompileError(
            f"Unknown kernel entry point: {entry_point}",
            kernel_name=entry_point,
            build_log=f"available entry points: {', '.join(sorted(KERNELS))}",
        )
    return Kernel(entry_point, function=KERNELS[entry_point])
