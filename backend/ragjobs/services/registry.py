import asyncio
from typing import List


class ActiveJobRegistry:
    """In-process set of job ids currently owned by an executor."""

    def __init__(self) -> None:
        self._lock = asyncio.Lock()
        self._jobs: set[str] = set()

    async def try_add(self, job_id: str) -> bool:
        async with self._lock:
            if job_id in self._jobs:
                return False
            self._jobs.add(job_id)
            return True

    async def discard(self, job_id: str) -> None:
        async with self._lock:
            self._jobs.discard(job_id)

    def contains(self, job_id: str) -> bool:
        return job_id in self._jobs

    def snapshot(self) -> List[str]:
        return sorted(self._jobs)

    def __len__(self) -> int:
        return len(self._jobs)
