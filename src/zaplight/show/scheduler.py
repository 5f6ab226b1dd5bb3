"""
Playlist Scheduler: turns playlists into timed device commands.

Split in two layers:

- ``PlaybackMachine`` is the pure state machine. It takes explicit
  timestamps and returns the commands to issue, so timing behaviour is
  testable without sleeping.
- ``PlaylistScheduler`` is the single task that owns one machine per device.
  Triggers are only queued from the outside; every session mutation happens
  inside its loop.

States per device: IDLE, PLAYING, DRAINING (current step finishing before a
pending playlist takes over).
"""

from __future__ import annotations

import asyncio
import time
from collections import deque
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Deque, List, Mapping, Optional, Protocol

import structlog

from zaplight.core.config import PlaylistConfig, PresetConfig
from zaplight.core.exceptions import DeviceUnreachable, PresetError
from zaplight.core.models import ConfirmedBoost

logger = structlog.get_logger()


class PlaybackPhase(Enum):
    IDLE = "idle"
    PLAYING = "playing"
    DRAINING = "draining"


class PreemptionPolicy(Enum):
    """What a trigger does while a playlist is already running."""

    FINISH_STEP = "finish_step"  # let the current step run out, then switch
    IMMEDIATE = "immediate"  # switch on the next command
    IGNORE = "ignore"  # drop the new trigger
    ENQUEUE = "enqueue"  # play after the current session ends


@dataclass(frozen=True)
class ShowRequest:
    """A request to play ``playlist``, usually caused by a boost."""

    playlist: PlaylistConfig
    boost: Optional[ConfirmedBoost] = None


@dataclass(frozen=True)
class DeviceCommand:
    """Apply ``preset`` on the device, fading over ``transition_s``."""

    preset: PresetConfig
    transition_s: float
    playlist: str
    step: Optional[int]  # None for the playlist's end preset
    session_start: bool = False  # first command of a session entered from IDLE
    boost: Optional[ConfirmedBoost] = None


@dataclass
class PlaybackSession:
    """The playlist currently driving a device."""

    request: ShowRequest
    device: str
    step_index: int
    step_started_at: float
    repeats_remaining: int

    @property
    def playlist(self) -> PlaylistConfig:
        return self.request.playlist

    @property
    def deadline(self) -> float:
        return self.step_started_at + self.playlist.durations[self.step_index]


class PlaybackMachine:
    """
    Pure playback state machine for one device.

    ``trigger`` and ``tick`` return the commands to issue, in order. Steps are
    scheduled from the previous deadline rather than from the wakeup time, so
    late wakeups never accumulate drift.
    """

    def __init__(
        self,
        device: str,
        presets: Mapping[str, PresetConfig],
        policy: PreemptionPolicy = PreemptionPolicy.FINISH_STEP,
        max_queued: int = 8,
    ):
        self.device = device
        self.presets = dict(presets)
        self.policy = policy
        self.max_queued = max_queued

        self.session: Optional[PlaybackSession] = None
        self.pending: Optional[ShowRequest] = None
        self.queued: Deque[ShowRequest] = deque()

    @property
    def phase(self) -> PlaybackPhase:
        if self.session is None:
            return PlaybackPhase.IDLE
        if self.pending is not None:
            return PlaybackPhase.DRAINING
        return PlaybackPhase.PLAYING

    @property
    def next_deadline(self) -> Optional[float]:
        return self.session.deadline if self.session is not None else None

    def trigger(self, now: float, request: ShowRequest) -> List[DeviceCommand]:
        name = request.playlist.name

        if self.session is None:
            return [self._start(request, now, from_idle=True)]

        if self.policy is PreemptionPolicy.FINISH_STEP:
            if self.pending is not None:
                logger.info(
                    "Pending playlist superseded",
                    device=self.device,
                    dropped=self.pending.playlist.name,
                    playlist=name,
                )
            self.pending = request
            logger.info(
                "Draining current step",
                device=self.device,
                current=self.session.playlist.name,
                playlist=name,
            )
            return []

        if self.policy is PreemptionPolicy.IMMEDIATE:
            self.pending = None
            return [self._start(request, now, from_idle=False)]

        if self.policy is PreemptionPolicy.ENQUEUE:
            if len(self.queued) >= self.max_queued:
                logger.warning("Playlist queue full, dropping trigger", device=self.device, playlist=name)
            else:
                self.queued.append(request)
            return []

        logger.info("Ignoring trigger during playback", device=self.device, playlist=name)
        return []

    def tick(self, now: float) -> List[DeviceCommand]:
        """Advance through every deadline that is due at ``now``."""
        commands: List[DeviceCommand] = []

        while self.session is not None and self.session.deadline <= now:
            session = self.session
            deadline = session.deadline

            if self.pending is not None:
                request, self.pending = self.pending, None
                commands.append(self._start(request, deadline, from_idle=False))
                continue

            if session.step_index + 1 < len(session.playlist.presets):
                session.step_index += 1
            elif session.repeats_remaining > 0:
                session.repeats_remaining -= 1
                session.step_index = 0
            else:
                commands.append(self._finish(session))
                if self.queued:
                    commands.append(self._start(self.queued.popleft(), deadline, from_idle=True))
                continue

            session.step_started_at = deadline
            commands.append(self._step_command(session))

        return commands

    def abandon(self) -> None:
        """Drop the session and anything waiting on it."""
        if self.session is not None:
            logger.warning(
                "Playback session abandoned",
                device=self.device,
                playlist=self.session.playlist.name,
                step=self.session.step_index,
            )
        self.session = None
        self.pending = None
        self.queued.clear()

    def _start(self, request: ShowRequest, now: float, from_idle: bool) -> DeviceCommand:
        self.session = PlaybackSession(
            request=request,
            device=self.device,
            step_index=0,
            step_started_at=now,
            repeats_remaining=request.playlist.repeat,
        )
        logger.info(
            "Playlist started",
            device=self.device,
            playlist=request.playlist.name,
            from_idle=from_idle,
        )
        return self._step_command(self.session, session_start=from_idle)

    def _finish(self, session: PlaybackSession) -> DeviceCommand:
        playlist = session.playlist
        self.session = None
        logger.info("Playlist finished", device=self.device, playlist=playlist.name)
        return DeviceCommand(
            preset=self._preset(playlist.end),
            transition_s=playlist.transitions[-1],
            playlist=playlist.name,
            step=None,
            boost=session.request.boost,
        )

    def _step_command(self, session: PlaybackSession, session_start: bool = False) -> DeviceCommand:
        playlist = session.playlist
        index = session.step_index
        return DeviceCommand(
            preset=self._preset(playlist.presets[index]),
            transition_s=playlist.transitions[index],
            playlist=playlist.name,
            step=index,
            session_start=session_start,
            boost=session.request.boost,
        )

    def _preset(self, name: str) -> PresetConfig:
        try:
            return self.presets[name]
        except KeyError:
            raise PresetError(name, "referenced by a playlist but not defined") from None


class CommandSink(Protocol):
    host: str

    async def set_preset(self, command: DeviceCommand) -> None:
        ...


class TriggerEmitter(Protocol):
    def trigger(self, command: DeviceCommand) -> None:
        ...


class PlaylistScheduler:
    """
    Owner task for one device's playback.

    ``trigger`` may be called from anywhere on the event loop; it only
    queues. The run loop applies triggers in arrival order, sleeps until the
    next step deadline and sends commands one at a time, so a command always
    completes before the next one goes out.
    """

    def __init__(
        self,
        machine: PlaybackMachine,
        sink: CommandSink,
        emitter: Optional[TriggerEmitter] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.machine = machine
        self.sink = sink
        self.emitter = emitter
        self._clock = clock

        self._inbox: Deque[ShowRequest] = deque()
        self._wakeup = asyncio.Event()
        self._idle = asyncio.Event()
        self._idle.set()
        self._task: Optional[asyncio.Task] = None

        # Stats
        self._sessions_started = 0
        self._commands_sent = 0
        self._abandoned = 0

    def trigger(self, request: ShowRequest) -> None:
        self._inbox.append(request)
        self._idle.clear()
        self._wakeup.set()

    def start(self) -> None:
        if self._task is None:
            self._task = asyncio.create_task(self.run(), name=f"scheduler:{self.machine.device}")

    async def stop(self) -> None:
        if self._task is not None:
            self._task.cancel()
            await asyncio.gather(self._task, return_exceptions=True)
            self._task = None

    async def wait_idle(self) -> None:
        """Wait until no playlist is running and no trigger is queued."""
        await self._idle.wait()

    async def run(self) -> None:
        while True:
            try:
                await self._iterate()
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.exception("Scheduler error", device=self.machine.device, error=str(e))
                self._abandon()

    async def _iterate(self) -> None:
        while self._inbox:
            request = self._inbox.popleft()
            await self._execute(self.machine.trigger(self._clock(), request))

        deadline = self.machine.next_deadline
        now = self._clock()
        if deadline is not None and deadline <= now:
            await self._execute(self.machine.tick(now))
            return

        if self.machine.phase is PlaybackPhase.IDLE and not self._inbox:
            self._idle.set()

        self._wakeup.clear()
        if self._inbox:
            return

        timeout = None if deadline is None else deadline - now
        try:
            await asyncio.wait_for(self._wakeup.wait(), timeout)
        except asyncio.TimeoutError:
            pass

    async def _execute(self, commands: List[DeviceCommand]) -> None:
        for command in commands:
            if command.session_start:
                self._sessions_started += 1
                if self.emitter is not None:
                    self.emitter.trigger(command)
            try:
                await self.sink.set_preset(command)
            except DeviceUnreachable as e:
                logger.error(
                    "Device unreachable, abandoning playlist",
                    device=self.machine.device,
                    playlist=command.playlist,
                    error=e.message,
                )
                self._abandon()
                return
            except PresetError as e:
                logger.error(
                    "Preset cannot be applied, abandoning playlist",
                    device=self.machine.device,
                    playlist=command.playlist,
                    error=e.message,
                )
                self._abandon()
                return
            self._commands_sent += 1
            logger.debug(
                "Command sent",
                device=self.machine.device,
                playlist=command.playlist,
                step=command.step,
                preset=command.preset.name,
                transition_s=command.transition_s,
            )

    def _abandon(self) -> None:
        self._abandoned += 1
        self.machine.abandon()

    def get_stats(self) -> dict:
        return {
            "device": self.machine.device,
            "phase": self.machine.phase.value,
            "sessions_started": self._sessions_started,
            "commands_sent": self._commands_sent,
            "abandoned": self._abandoned,
        }
