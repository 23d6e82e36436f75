import logging
from dataclasses import dataclass

from provisioner.errors import RangeError


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ResourceDescriptor:
    cpu_count: int
    memory_mb: int


class ResourceAllocator:
    def __init__(
        self,
        max_cpu_count: int,
        max_memory_mb: int,
        log: logging.Logger | logging.LoggerAdapter = logger,
    ):
        self.max_cpu_count = max_cpu_count
        self.max_memory_mb = max_memory_mb
        self.log = log

    def allocate(self, cpu_count: int, memory_mb: int) -> ResourceDescriptor:
        if not 1 <= cpu_count <= self.max_cpu_count:
            raise RangeError("CpuNum", cpu_count, 1, self.max_cpu_count)
        if not 1 <= memory_mb <= self.max_memory_mb:
            raise RangeError("MemoryInMegabytes", memory_mb, 1, self.max_memory_mb)
        self.log.debug("resources allocated cpu=%s memory_mb=%s", cpu_count, memory_mb)
        return ResourceDescriptor(cpu_count=cpu_count, memory_mb=memory_mb)
