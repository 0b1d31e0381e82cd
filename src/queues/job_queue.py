# src/queues/job_queue.py
# -----------------------------------------------------------------------------
# Очередь задач поверх Redis (redis.asyncio)
# -----------------------------------------------------------------------------
# Раскладка ключей для очереди <prefix>:<name>:
#   :id          - счётчик id задач (INCR)
#   :job:<id>    - hash с данными задачи
#   :wait        - list, ожидающие (LPUSH, забираем справа → примерно FIFO)
#   :active      - list, взятые воркером
#   :delayed     - zset, отложенные (ретраи/расписание), score = run_at в мс
#   :completed   - zset, score = finished_on
#   :failed      - zset, score = finished_on (исчерпали попытки)
#   :repeat      - hash, ключ расписания → JSON записи расписания
#
# Гарантия: каждая попытка задачи отдаётся ровно одному воркеру (LMOVE атомарен).
# Доставка - at-least-once: упавшая попытка перезапускается целиком.

from __future__ import annotations

import json
import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, List, Optional

from redis.exceptions import WatchError

from src.config import QueueSettings

log = logging.getLogger(__name__)


@dataclass(frozen=True)
class JobOptions:
    attempts: int = 3
    backoff_delay_ms: int = 1000
    remove_on_complete: int = 100
    remove_on_fail: int = 500

    @classmethod
    def from_settings(cls, qs: QueueSettings) -> "JobOptions":
        return cls(
            attempts=qs.attempts,
            backoff_delay_ms=qs.backoff_delay_ms,
            remove_on_complete=qs.remove_on_complete,
            remove_on_fail=qs.remove_on_fail,
        )


@dataclass
class Job:
    id: str
    name: str
    data: Dict[str, Any]
    opts: JobOptions
    attempts_made: int = 0
    status: str = "wait"
    timestamp: int = 0
    processed_on: Optional[int] = None
    finished_on: Optional[int] = None
    failed_reason: Optional[str] = None
    return_value: Any = None
    repeat_key: Optional[str] = None


@dataclass(frozen=True)
class RepeatableJob:
    key: str
    name: str
    hour: int
    minute: int
    next_run: int
    job_id: Optional[str] = None
    data: Dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class EnqueueResult:
    """
    Результат «best-effort» постановки в очередь. Вызывающий может его игнорировать:
    ошибки постановки сюда складываются, а не бросаются.
    """
    queued: bool
    job_id: Optional[str] = None
    error: Optional[str] = None


def backoff_delay(attempts_made: int, base_delay_ms: int) -> int:
    """Экспоненциальный бэкофф: base, 2*base, 4*base, ..."""
    return int(base_delay_ms * (2 ** max(attempts_made - 1, 0)))


def next_daily_run(now: datetime, hour: int, minute: int = 0) -> datetime:
    """
    Следующее «окно» ежедневного запуска по времени сервера.
    Если на сегодня время уже прошло - завтра.
    """
    target = now.replace(hour=hour, minute=minute, second=0, microsecond=0)
    if target <= now:
        target = target + timedelta(days=1)
    return target


def _dump(value: Any) -> str:
    return json.dumps(value, separators=(",", ":"))


class JobQueue:
    def __init__(
        self,
        name: str,
        redis,
        *,
        prefix: str = "thnx",
        default_options: Optional[JobOptions] = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.name = name
        self._redis = redis
        self._prefix = prefix
        self.default_options = default_options or JobOptions()
        self._clock = clock

    # ---------- ключи ----------
    def _key(self, suffix: str) -> str:
        return f"{self._prefix}:{self.name}:{suffix}"

    def _job_key(self, job_id: str) -> str:
        return self._key(f"job:{job_id}")

    def _now_ms(self) -> int:
        return int(self._clock() * 1000)

    # ---------- постановка ----------
    async def add(
        self,
        name: str,
        data: Dict[str, Any],
        *,
        delay_ms: int = 0,
        opts: Optional[JobOptions] = None,
        repeat_key: Optional[str] = None,
    ) -> Job:
        opts = opts or self.default_options
        payload = _dump(data)  # ошибки сериализации - до записи в Redis
        job_id = str(await self._redis.incr(self._key("id")))
        now = self._now_ms()

        job = Job(
            id=job_id,
            name=name,
            data=data,
            opts=opts,
            status="delayed" if delay_ms > 0 else "wait",
            timestamp=now,
            repeat_key=repeat_key,
        )

        fields = {
            "name": name,
            "data": payload,
            "opts": _dump(opts.__dict__),
            "attempts_made": 0,
            "status": job.status,
            "timestamp": now,
        }
        if repeat_key:
            fields["repeat_key"] = repeat_key

        async with self._redis.pipeline(transaction=True) as pipe:
            pipe.hset(self._job_key(job_id), mapping=fields)
            if delay_ms > 0:
                pipe.zadd(self._key("delayed"), {job_id: now + delay_ms})
            else:
                pipe.lpush(self._key("wait"), job_id)
            await pipe.execute()
        return job

    async def get_job(self, job_id: str) -> Optional[Job]:
        raw = await self._redis.hgetall(self._job_key(job_id))
        if not raw:
            return None
        return self._job_from_hash(job_id, raw)

    def _job_from_hash(self, job_id: str, raw: Dict[str, str]) -> Job:
        def _opt_int(name: str) -> Optional[int]:
            v = raw.get(name)
            return int(v) if v not in (None, "") else None

        opts_raw = raw.get("opts")
        opts = JobOptions(**json.loads(opts_raw)) if opts_raw else self.default_options
        rv = raw.get("return_value")
        return Job(
            id=job_id,
            name=raw.get("name", ""),
            data=json.loads(raw.get("data") or "{}"),
            opts=opts,
            attempts_made=int(raw.get("attempts_made") or 0),
            status=raw.get("status", "wait"),
            timestamp=int(raw.get("timestamp") or 0),
            processed_on=_opt_int("processed_on"),
            finished_on=_opt_int("finished_on"),
            failed_reason=raw.get("failed_reason") or None,
            return_value=json.loads(rv) if rv else None,
            repeat_key=raw.get("repeat_key") or None,
        )

    # ---------- выдача воркеру ----------
    async def promote_delayed(self) -> int:
        """Переносит созревшие отложенные задачи в wait. Возвращает количество."""
        now = self._now_ms()
        delayed = self._key("delayed")
        async with self._redis.pipeline(transaction=True) as pipe:
            while True:
                try:
                    # ZREM и LPUSH идут одним MULTI; конкурент с тем же набором получит WatchError
                    await pipe.watch(delayed)
                    due = await pipe.zrangebyscore(delayed, "-inf", now)
                    if not due:
                        return 0
                    pipe.multi()
                    pipe.zrem(delayed, *due)
                    for job_id in due:
                        pipe.hset(self._job_key(job_id), "status", "wait")
                        pipe.lpush(self._key("wait"), job_id)
                    await pipe.execute()
                    return len(due)
                except WatchError:
                    continue

    async def fetch_next(self) -> Optional[Job]:
        job_id = await self._redis.lmove(self._key("wait"), self._key("active"), "RIGHT", "LEFT")
        if job_id is None:
            return None

        if not await self._redis.exists(self._job_key(job_id)):
            # hash уже вычищен ретеншном - выбрасываем осиротевший id
            await self._redis.lrem(self._key("active"), 1, job_id)
            return None

        now = self._now_ms()
        # первый подхват вхождения; ретраи и ручной retry_job его не повторяют
        first_pickup = await self._redis.hsetnx(self._job_key(job_id), "first_processed_on", now)
        await self._redis.hset(self._job_key(job_id), mapping={"status": "active", "processed_on": now})
        job = await self.get_job(job_id)

        if job.repeat_key and first_pickup:
            await self._schedule_next_repeat(job.repeat_key)
        return job

    # ---------- завершение ----------
    async def complete(self, job: Job, return_value: Any = None) -> None:
        now = self._now_ms()
        job.status = "completed"
        job.finished_on = now
        job.return_value = return_value
        async with self._redis.pipeline(transaction=True) as pipe:
            pipe.lrem(self._key("active"), 1, job.id)
            pipe.hset(
                self._job_key(job.id),
                mapping={
                    "status": "completed",
                    "finished_on": now,
                    "return_value": _dump(return_value),
                },
            )
            pipe.zadd(self._key("completed"), {job.id: now})
            await pipe.execute()
        await self._trim("completed", job.opts.remove_on_complete)

    async def fail(self, job: Job, error: BaseException | str) -> str:
        """
        Фиксирует неудачную попытку. Если попытки ещё есть - задача уходит в delayed
        с экспоненциальным бэкоффом ("delayed"), иначе - в failed ("failed").
        """
        reason = str(error) or error.__class__.__name__
        now = self._now_ms()
        job.attempts_made += 1
        job.failed_reason = reason

        if job.attempts_made < job.opts.attempts:
            delay = backoff_delay(job.attempts_made, job.opts.backoff_delay_ms)
            job.status = "delayed"
            async with self._redis.pipeline(transaction=True) as pipe:
                pipe.lrem(self._key("active"), 1, job.id)
                pipe.hset(
                    self._job_key(job.id),
                    mapping={
                        "status": "delayed",
                        "attempts_made": job.attempts_made,
                        "failed_reason": reason,
                    },
                )
                pipe.zadd(self._key("delayed"), {job.id: now + delay})
                await pipe.execute()
            return "delayed"

        job.status = "failed"
        job.finished_on = now
        async with self._redis.pipeline(transaction=True) as pipe:
            pipe.lrem(self._key("active"), 1, job.id)
            pipe.hset(
                self._job_key(job.id),
                mapping={
                    "status": "failed",
                    "attempts_made": job.attempts_made,
                    "failed_reason": reason,
                    "finished_on": now,
                },
            )
            pipe.zadd(self._key("failed"), {job.id: now})
            await pipe.execute()
        await self._trim("failed", job.opts.remove_on_fail)
        return "failed"

    async def _trim(self, state: str, keep: int) -> None:
        """Оставляет только последние keep задач в completed/failed, старые удаляет целиком."""
        key = self._key(state)
        total = await self._redis.zcard(key)
        overflow = total - keep
        if overflow <= 0:
            return
        stale = await self._redis.zrange(key, 0, overflow - 1)
        if not stale:
            return
        async with self._redis.pipeline(transaction=True) as pipe:
            pipe.zrem(key, *stale)
            pipe.delete(*[self._job_key(j) for j in stale])
            await pipe.execute()

    # ---------- мониторинг ----------
    async def get_job_counts(self) -> Dict[str, int]:
        async with self._redis.pipeline(transaction=False) as pipe:
            pipe.llen(self._key("wait"))
            pipe.llen(self._key("active"))
            pipe.zcard(self._key("delayed"))
            pipe.zcard(self._key("completed"))
            pipe.zcard(self._key("failed"))
            wait, active, delayed, completed, failed = await pipe.execute()
        return {
            "wait": int(wait),
            "active": int(active),
            "delayed": int(delayed),
            "completed": int(completed),
            "failed": int(failed),
        }

    async def get_failed(self, start: int = 0, end: int = 49) -> List[Job]:
        ids = await self._redis.zrevrange(self._key("failed"), start, end)
        jobs: List[Job] = []
        for job_id in ids:
            job = await self.get_job(job_id)
            if job is not None:
                jobs.append(job)
        return jobs

    async def retry_job(self, job_id: str) -> bool:
        """Ручной перезапуск финально упавшей задачи (с обнулением попыток)."""
        if not await self._redis.zrem(self._key("failed"), job_id):
            return False
        async with self._redis.pipeline(transaction=True) as pipe:
            pipe.hset(self._job_key(job_id), mapping={"status": "wait", "attempts_made": 0})
            pipe.hdel(self._job_key(job_id), "finished_on")
            pipe.lpush(self._key("wait"), job_id)
            await pipe.execute()
        return True

    # ---------- повторяющиеся задачи (раз в сутки) ----------
    @staticmethod
    def repeat_key_for(name: str, hour: int, minute: int) -> str:
        return f"{name}::{hour:02d}:{minute:02d}"

    async def add_repeatable(self, name: str, data: Dict[str, Any], *, hour: int, minute: int = 0) -> str:
        key = self.repeat_key_for(name, hour, minute)
        if await self._redis.hexists(self._key("repeat"), key):
            return key
        entry = {"key": key, "name": name, "data": data, "hour": hour, "minute": minute}
        await self._redis.hset(self._key("repeat"), key, _dump(entry))
        await self._schedule_next_repeat(key)
        return key

    async def _schedule_next_repeat(self, key: str) -> None:
        raw = await self._redis.hget(self._key("repeat"), key)
        if not raw:
            return
        entry = json.loads(raw)
        now = datetime.fromtimestamp(self._clock())
        run_at = next_daily_run(now, entry["hour"], entry["minute"])
        delay_ms = max(int(run_at.timestamp() * 1000) - self._now_ms(), 1)
        job = await self.add(entry["name"], entry["data"], delay_ms=delay_ms, repeat_key=key)
        entry["job_id"] = job.id
        entry["next_run"] = int(run_at.timestamp() * 1000)
        await self._redis.hset(self._key("repeat"), key, _dump(entry))

    async def get_repeatable_jobs(self) -> List[RepeatableJob]:
        raw = await self._redis.hgetall(self._key("repeat"))
        out: List[RepeatableJob] = []
        for key, value in raw.items():
            entry = json.loads(value)
            out.append(
                RepeatableJob(
                    key=key,
                    name=entry["name"],
                    hour=entry["hour"],
                    minute=entry["minute"],
                    next_run=entry.get("next_run", 0),
                    job_id=entry.get("job_id"),
                    data=entry.get("data") or {},
                )
            )
        return out

    async def remove_repeatable_by_key(self, key: str) -> bool:
        if not await self._redis.hdel(self._key("repeat"), key):
            return False
        # снимаем все отложенные вхождения этого расписания, а не только последнее
        stale = [
            job_id
            for job_id in await self._redis.zrange(self._key("delayed"), 0, -1)
            if await self._redis.hget(self._job_key(job_id), "repeat_key") == key
        ]
        if stale:
            async with self._redis.pipeline(transaction=True) as pipe:
                pipe.zrem(self._key("delayed"), *stale)
                pipe.delete(*[self._job_key(j) for j in stale])
                await pipe.execute()
        return True


async def safe_enqueue(queue: JobQueue, name: str, data: Dict[str, Any]) -> EnqueueResult:
    """
    Постановка задачи, которая никогда не бросает: ошибка логируется и
    возвращается в EnqueueResult. Бизнес-операция не должна падать из-за логов.
    """
    try:
        job = await queue.add(name, data)
    except Exception as exc:
        log.exception("Failed to queue %s job on %s", name, queue.name)
        return EnqueueResult(queued=False, error=str(exc) or exc.__class__.__name__)
    return EnqueueResult(queued=True, job_id=job.id)
