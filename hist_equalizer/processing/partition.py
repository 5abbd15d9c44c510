"""
Work partitioning: how an array is split across workgroups.

Work-item ``gid`` of a partition processes elements ``gid``,
``gid + global_size``, ... below ``element_count``. Buffers holding a
partitioned array are allocated ``padded_size`` elements long and
zero-filled; kernels never touch the padding because their loops are bounded
by the real element count.
"""

import math
from dataclasses import dataclass

from hist_equalizer.config import settings
from hist_equalizer.utils.errors import ConfigurationError


@dataclass(frozen=True)
class WorkPartition:
    local_size: int
    group_count: int
    element_count: int

    def __post_init__(self):
        if self.local_size < 1:
            raise ConfigurationError(f"Invalid workgroup size {self.local_size}", setting_name="workgroup_size")
        if self.group_count < 1:
            raise ConfigurationError(f"Invalid group count {self.group_count}", setting_name="group_count")
        if self.element_count < 0:
            raise ValueError(f"Negative element count {self.element_count}")

    @property
    def global_size(self) -> int:
        """Total number of work-items."""
        return self.local_size * self.group_count

    @property
    def items_per_work_item(self) -> int:
        return max(1, math.ceil(self.element_count / self.global_size))

    @property
    def padded_size(self) -> int:
        """Element count rounded up to a whole number of grid passes."""
        return self.items_per_work_item * self.global_size

    @property
    def padding(self) -> int:
        return self.padded_size - self.element_count

    @classmethod
    def for_elements(cls, element_count: int, local_size: int, compute_units: int,
                     groups_per_unit: int = None) -> "WorkPartition":
        """
        Partition ``element_count`` elements.

        The group count targets ``compute_units * groups_per_unit`` groups but
        never exceeds the number of groups needed to give every work-item at
        least one element.
        """
        if groups_per_unit is None:
            groups_per_unit = settings.PIPELINE_DEFAULTS["groups_per_compute_unit"]
        needed = max(1, math.ceil(element_count / max(local_size, 1)))
        target = max(1, compute_units * groups_per_unit)
        return cls(local_size=local_size, group_count=min(needed, target), element_count=element_count)

    @classmethod
    def for_device(cls, device, element_count: int, local_size: int = None) -> "WorkPartition":
        """Partition sized from a device's capabilities and the configured workgroup size."""
        if local_size is None:
            local_size = settings.PIPELINE_DEFAULTS["workgroup_size"]
        if local_size > device.info.max_workgroup_size:
            raise ConfigurationError(
                f"Workgroup size {local_size} exceeds device limit {device.info.max_workgroup_size}",
                setting_name="workgroup_size",
            )
        return cls.for_elements(element_count, local_size, device.info.compute_units)

    @classmethod
    def single_group(cls, size: int) -> "WorkPartition":
        """One workgroup with one work-item per element (scan, LUT, reduction)."""
        return cls(local_size=size, group_count=1, element_count=size)
