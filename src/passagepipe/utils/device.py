"""
Compute device utilities and the device pool.

A DevicePool is a fixed, ordered set of DeviceHandles, each one compute
device bound to its own loaded model instance. Handles are exclusive: only
one document at a time may run on a given device. Items of a batch are
routed round-robin, item ``i`` to device ``i mod N``.

If a GPU can't be initialized the slot falls back to CPU instead of failing
the run. Failing to load the model itself is fatal and propagates.
"""

import logging
import os
import threading
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Any, Callable, Iterator, List, Optional, Sequence

from passagepipe.core.errors import ConfigError

logger = logging.getLogger(__name__)

CPU = "cpu"


def is_gpu_available() -> bool:
    """True if torch is importable and sees at least one CUDA device."""
    try:
        import torch
    except ImportError:
        return False
    return torch.cuda.is_available()


def resolve_device(gpu_id: Optional[int]) -> str:
    """Device string for ``gpu_id``, or ``"cpu"`` if it can't be used.

    Args:
        gpu_id: CUDA ordinal to try. None means CPU.

    Returns:
        ``"cuda:<id>"`` when the device exists, otherwise ``"cpu"``
    """
    if gpu_id is None:
        return CPU
    try:
        import torch
        if not torch.cuda.is_available():
            raise RuntimeError("CUDA is not available")
        if gpu_id >= torch.cuda.device_count():
            raise RuntimeError(f"only {torch.cuda.device_count()} CUDA device(s) present")
        torch.cuda.get_device_properties(gpu_id)
    except Exception as e:
        logger.warning(f"Error initializing CUDA device {gpu_id}. Switching to CPU. Error: {e}")
        return CPU
    return f"cuda:{gpu_id}"


def get_device(gpus: Optional[Sequence[int]] = None) -> str:
    """Primary device for a list of GPU ids (first usable one, else CPU)."""
    for gpu_id in gpus or []:
        device = resolve_device(gpu_id)
        if device != CPU:
            return device
    return CPU


def setup_device_environment(gpus: Optional[Sequence[int]] = None):
    """Pin CUDA device ordering so gpu ids match nvidia-smi.

    ``gpus=[]`` hides all GPUs (CPU only run).
    """
    os.environ.setdefault("CUDA_DEVICE_ORDER", "PCI_BUS_ID")
    if gpus is not None and len(gpus) == 0:
        os.environ["CUDA_VISIBLE_DEVICES"] = ""


@dataclass
class DeviceHandle:
    """One compute device and the model instance loaded on it.

    Use ``pool.acquire(index)`` (or ``with handle:``) to hold it exclusively.
    """
    index: int
    device: str
    backend: Any
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False, compare=False)

    def __enter__(self) -> "DeviceHandle":
        self._lock.acquire()
        return self

    def __exit__(self, exc_type, exc, tb):
        self._lock.release()

    def locked(self) -> bool:
        return self._lock.locked()


class DevicePool:
    """Fixed ordered set of exclusive device handles."""

    def __init__(self, handles: Sequence[DeviceHandle]):
        if not handles:
            raise ConfigError("DevicePool needs at least one device")
        self._handles: List[DeviceHandle] = list(handles)

    @classmethod
    def from_factory(cls, backend_factory: Callable[[str], Any], count: int = 2,
                     gpus: Optional[Sequence[int]] = None) -> "DevicePool":
        """Create ``count`` devices and load one backend on each.

        Slot ``i`` uses ``gpus[i]`` when given and usable, otherwise CPU.
        Errors raised by ``backend_factory`` (model load failures) propagate.
        """
        if count <= 0:
            raise ConfigError(f"device count must be positive, got {count}")
        gpus = list(gpus or [])
        handles = []
        for index in range(count):
            gpu_id = gpus[index] if index < len(gpus) else None
            device = resolve_device(gpu_id)
            logger.info(f"Loading model for device slot {index} on {device}")
            handles.append(DeviceHandle(index=index, device=device, backend=backend_factory(device)))
        return cls(handles)

    def __len__(self) -> int:
        return len(self._handles)

    def __iter__(self) -> Iterator[DeviceHandle]:
        return iter(self._handles)

    def __getitem__(self, index: int) -> DeviceHandle:
        return self._handles[index]

    @property
    def size(self) -> int:
        return len(self._handles)

    def assign(self, item_index: int) -> int:
        """Device index for the ``item_index``-th item of a batch."""
        return item_index % len(self._handles)

    @contextmanager
    def acquire(self, device_index: int) -> Iterator[DeviceHandle]:
        """Hold a device exclusively, blocking while another item uses it."""
        handle = self._handles[device_index]
        with handle:
            yield handle

    def devices(self) -> List[str]:
        return [h.device for h in self._handles]

    def __repr__(self) -> str:
        return f"DevicePool(devices={self.devices()})"
