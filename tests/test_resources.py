import pytest

from provisioner.errors import RangeError
from provisioner.services.resources import ResourceAllocator, ResourceDescriptor


def test_allocate_within_bounds():
    allocator = ResourceAllocator(max_cpu_count=8, max_memory_mb=16384)
    assert allocator.allocate(2, 4096) == ResourceDescriptor(cpu_count=2, memory_mb=4096)
    assert allocator.allocate(8, 16384) == ResourceDescriptor(cpu_count=8, memory_mb=16384)


@pytest.mark.parametrize(
    ("cpu", "memory", "field"),
    [
        (-1, 4096, "CpuNum"),
        (0, 4096, "CpuNum"),
        (9, 4096, "CpuNum"),
        (2, 0, "MemoryInMegabytes"),
        (2, 16385, "MemoryInMegabytes"),
    ],
)
def test_out_of_range_values(cpu, memory, field):
    allocator = ResourceAllocator(max_cpu_count=8, max_memory_mb=16384)
    with pytest.raises(RangeError) as excinfo:
        allocator.allocate(cpu, memory)
    assert excinfo.value.field == field
    assert excinfo.value.fields == [field]
