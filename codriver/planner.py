"""
Speech planner: the single arbiter of what the driver hears.

Every tick the planner works out where the vehicle is, what is coming up
(curves, zone boundaries, chatter), how many seconds of talking fit before
the next curve, and then says at most one thing. Priority, highest first:

1. Zone briefing, on the tick the vehicle crosses into a new zone
2. Curve callout: the main call once the curve is inside the mode's trigger
   window, plus an early heads-up and a final "now" for hard curves
3. "Clear" for a long straight after a curve (technical mode)
4. Chatter, when the mode allows it and the budget is generous
5. Transition heads-up for a zone boundary a few hundred metres ahead

Everything goes through submit(), the gatekeeper, which rejects repeats
and respects the voice cooldown before handing text to the speech output.
"""

import logging
import math
import random
import threading
import time
from collections import deque
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Deque, Dict, List, Optional, Sequence, Set, Tuple, Union

from .callouts import (
    HARD_SEVERITY,
    CalloutPhase,
    DrivingMode,
    adjust_for_speed,
    build_zone_briefing,
    generate_callout,
    generate_clear_callout,
    timing_profile,
    transition_callout,
    voice_profile_name,
    warning_distances,
)
from .chatter import ChatterItem, pick_variant
from .curves import Curve, Direction, expand_chicanes
from .geometry import angle_difference, bearing, haversine_distance
from .speech import SpeechOutput, SpeechPriority
from .stats import DriveStats
from .zones import Zone, zone_at
from utils.conversions import metres_to_miles, mph_to_mps
from utils.settings import section_overrides
from config import (
    CODRIVER_BRIEFING_MIN_BUDGET_S,
    CODRIVER_BUDGET_MIN_SPEED_MPH,
    CODRIVER_CHATTER_MIN_BUDGET_S,
    CODRIVER_CHATTER_QUIET_M,
    CODRIVER_CHATTER_WINDOW_M,
    CODRIVER_CLEAR_MIN_SILENCE_S,
    CODRIVER_CURVE_IDENTITY_M,
    CODRIVER_DEDUP_HISTORY,
    CODRIVER_DEDUP_SOURCE_M,
    CODRIVER_DEDUP_TEXT_M,
    CODRIVER_FINAL_MIN_AHEAD_M,
    CODRIVER_HEADING_HOLD_SPEED_MPH,
    CODRIVER_NO_CURVE_DISTANCE_M,
    CODRIVER_PASSED_BEARING_DEG,
    CODRIVER_PASSED_BEHIND_M,
    CODRIVER_PASSED_BUFFER_M,
    CODRIVER_PLAN_DISTANCE_M,
    CODRIVER_PLAN_INTERVAL_S,
    CODRIVER_PLAN_LOOKAHEAD_M,
    CODRIVER_STATS_LOG_INTERVAL_S,
    CODRIVER_TRANSITION_MAX_AHEAD_M,
    CODRIVER_TRANSITION_MIN_AHEAD_M,
    CODRIVER_TRANSITION_MIN_BUDGET_S,
    CODRIVER_TTS_OVERHEAD_S,
    CODRIVER_WORDS_PER_SECOND,
)

logger = logging.getLogger('tramo.planner')

# Curves are considered from just behind the vehicle (metres)
_CURVE_BEHIND_M = 50.0


class EventSource(Enum):
    CURVE = "curve"
    BRIEFING = "briefing"
    CHATTER = "chatter"
    SYSTEM = "system"


SOURCE_PRIORITY = {
    EventSource.CURVE: SpeechPriority.HIGH,
    EventSource.BRIEFING: SpeechPriority.NORMAL,
    EventSource.CHATTER: SpeechPriority.LOW,
    EventSource.SYSTEM: SpeechPriority.NORMAL,
}


@dataclass(frozen=True)
class Event:
    """Something the planner might say, derived fresh on every tick."""

    id: str
    distance: float
    ahead: float
    text: str
    source: EventSource
    priority: SpeechPriority
    curve: Optional[Curve] = None
    zone: Optional[Zone] = None
    phase: CalloutPhase = CalloutPhase.MAIN


@dataclass(frozen=True)
class SpeechBudget:
    budget_seconds: float
    budget_words: int
    time_to_next_curve: float


@dataclass(frozen=True)
class Utterance:
    """What was handed to the speech output on a tick."""

    text: str
    source: EventSource
    priority: SpeechPriority
    voice_profile: str
    distance: float
    event_id: Optional[str] = None


@dataclass
class LastSpoken:
    text: str = ""
    source: Optional[EventSource] = None
    time: float = 0.0
    distance: float = 0.0


class AnnouncedCurves:
    """
    Curves already spoken or deliberately skipped.

    Geometry is refetched every few seconds and the same physical curve can
    come back with a slightly different apex, so membership is checked at
    two levels: the exact id first, then any announced curve in the same
    direction within identity_m.
    """

    def __init__(self, identity_m: float = CODRIVER_CURVE_IDENTITY_M):
        self.identity_m = identity_m
        self._ids: Set[str] = set()
        self._points: List[Tuple[float, float, Direction]] = []

    def add(self, curve: Curve):
        for c in [curve] + expand_chicanes([curve]):
            if c.id not in self._ids:
                self._ids.add(c.id)
                self._points.append((c.lat, c.lon, c.direction))

    def contains(self, curve: Curve) -> bool:
        if curve.id in self._ids:
            return True
        for lat, lon, direction in self._points:
            if direction is curve.direction and \
                    haversine_distance(lat, lon, curve.lat, curve.lon) <= self.identity_m:
                return True
        return False

    def __contains__(self, curve: Curve) -> bool:
        return self.contains(curve)

    def __len__(self) -> int:
        return len(self._ids)

    def clear(self):
        self._ids.clear()
        self._points.clear()


def _empty_counters() -> Dict[str, int]:
    return {'spoken': 0, 'curves': 0, 'chatter': 0, 'briefings': 0, 'dropped': 0}


@dataclass
class PlannerState:
    """Everything the planner remembers during one drive. Reset on stop."""

    last_spoken: LastSpoken = field(default_factory=LastSpoken)
    announced_curves: AnnouncedCurves = field(default_factory=AnnouncedCurves)
    called_curves: AnnouncedCurves = field(default_factory=AnnouncedCurves)
    early_called: AnnouncedCurves = field(default_factory=AnnouncedCurves)
    final_called: AnnouncedCurves = field(default_factory=AnnouncedCurves)
    cleared_before: AnnouncedCurves = field(default_factory=AnnouncedCurves)
    recent_speech: Deque[Tuple[str, float]] = field(
        default_factory=lambda: deque(maxlen=CODRIVER_DEDUP_HISTORY))
    announced_events: Set[str] = field(default_factory=set)
    announced_chatter: Set[str] = field(default_factory=set)
    current_zone_id: Optional[str] = None
    stats: DriveStats = field(default_factory=DriveStats)
    counters: Dict[str, int] = field(default_factory=_empty_counters)
    cooldown_until: float = 0.0
    last_plan_distance: Optional[float] = None
    last_plan_time: Optional[float] = None
    last_summary_time: Optional[float] = None
    last_distance: Optional[float] = None


@dataclass
class PlannerConfig:
    plan_distance_m: float = CODRIVER_PLAN_DISTANCE_M
    plan_interval_s: float = CODRIVER_PLAN_INTERVAL_S
    lookahead_m: float = CODRIVER_PLAN_LOOKAHEAD_M
    tts_overhead_s: float = CODRIVER_TTS_OVERHEAD_S
    words_per_second: float = CODRIVER_WORDS_PER_SECOND
    budget_min_speed_mph: float = CODRIVER_BUDGET_MIN_SPEED_MPH
    no_curve_distance_m: float = CODRIVER_NO_CURVE_DISTANCE_M
    dedup_text_m: float = CODRIVER_DEDUP_TEXT_M
    dedup_source_m: float = CODRIVER_DEDUP_SOURCE_M
    dedup_history: int = CODRIVER_DEDUP_HISTORY
    curve_identity_m: float = CODRIVER_CURVE_IDENTITY_M
    passed_bearing_deg: float = CODRIVER_PASSED_BEARING_DEG
    passed_buffer_m: float = CODRIVER_PASSED_BUFFER_M
    passed_behind_m: float = CODRIVER_PASSED_BEHIND_M
    heading_hold_speed_mph: float = CODRIVER_HEADING_HOLD_SPEED_MPH
    briefing_min_budget_s: float = CODRIVER_BRIEFING_MIN_BUDGET_S
    chatter_min_budget_s: float = CODRIVER_CHATTER_MIN_BUDGET_S
    transition_min_budget_s: float = CODRIVER_TRANSITION_MIN_BUDGET_S
    chatter_window_m: float = CODRIVER_CHATTER_WINDOW_M
    chatter_quiet_m: float = CODRIVER_CHATTER_QUIET_M
    transition_min_ahead_m: float = CODRIVER_TRANSITION_MIN_AHEAD_M
    transition_max_ahead_m: float = CODRIVER_TRANSITION_MAX_AHEAD_M
    final_min_ahead_m: float = CODRIVER_FINAL_MIN_AHEAD_M
    clear_min_silence_s: float = CODRIVER_CLEAR_MIN_SILENCE_S
    stats_log_interval_s: float = CODRIVER_STATS_LOG_INTERVAL_S

    @classmethod
    def from_settings(cls, settings) -> "PlannerConfig":
        """Defaults overridden by the "planner" section of the settings file."""
        return cls(**section_overrides(settings, "planner", cls))


@dataclass(frozen=True)
class PlanningInput:
    """One tick's view of the vehicle. distance is along the route (or odometer)."""

    distance: float
    speed_mph: float
    mode: DrivingMode
    lat: Optional[float] = None
    lon: Optional[float] = None
    heading: Optional[float] = None
    road_name: Optional[str] = None


def calculate_budget(
    distance_to_curve: Optional[float],
    speed_mph: float,
    config: Optional[PlannerConfig] = None,
) -> SpeechBudget:
    """
    Seconds (and words) of speech that fit before the next curve.

    Speed is floored so a stopped car does not get an infinite budget, and
    no curve at all counts as one very far away.
    """
    config = config or PlannerConfig()
    if distance_to_curve is None:
        distance_to_curve = config.no_curve_distance_m
    speed_mps = mph_to_mps(max(speed_mph, config.budget_min_speed_mph))
    time_to_curve = max(0.0, distance_to_curve) / speed_mps
    budget_seconds = max(0.0, time_to_curve - config.tts_overhead_s)
    return SpeechBudget(
        budget_seconds=budget_seconds,
        budget_words=int(math.floor(budget_seconds * config.words_per_second)),
        time_to_next_curve=time_to_curve,
    )


class SpeechPlanner:
    """Decides, tick by tick, the one thing worth saying."""

    def __init__(
        self,
        speech: SpeechOutput,
        config: Optional[PlannerConfig] = None,
        rng: Optional[random.Random] = None,
        clock=time.monotonic,
    ):
        """
        Args:
            speech: Output the accepted text is handed to
            config: Planner thresholds
            rng: Random source for chatter variants (seed it for repeatable runs)
            clock: Monotonic clock used when tick() is given no time
        """
        self.speech = speech
        self.config = config or PlannerConfig()
        self._rng = rng or random.Random()
        self._clock = clock
        self._lock = threading.RLock()
        self._running = False

        self._curves: Tuple[Curve, ...] = ()
        self._zones: Tuple[Zone, ...] = ()
        self._chatter: Tuple[ChatterItem, ...] = ()
        self._last_budget: Optional[SpeechBudget] = None
        self._state = self._new_state()

    def _new_state(self) -> PlannerState:
        identity_m = self.config.curve_identity_m
        return PlannerState(
            announced_curves=AnnouncedCurves(identity_m),
            called_curves=AnnouncedCurves(identity_m),
            early_called=AnnouncedCurves(identity_m),
            final_called=AnnouncedCurves(identity_m),
            cleared_before=AnnouncedCurves(identity_m),
            recent_speech=deque(maxlen=self.config.dedup_history),
        )

    # ------------------------------------------------------------------
    # Route data
    # ------------------------------------------------------------------

    def set_route(
        self,
        curves: Sequence[Curve],
        zones: Sequence[Zone] = (),
        chatter: Sequence[ChatterItem] = (),
    ):
        """Hand the planner a whole route's curves, zones and chatter timeline."""
        with self._lock:
            self._curves = tuple(sorted(curves, key=lambda c: c.distance_from_start))
            self._zones = tuple(zones)
            self._chatter = tuple(sorted(chatter, key=lambda c: c.trigger_distance))
        logger.info(
            "Route set: %d curves, %d zones, %d chatter items",
            len(self._curves), len(self._zones), len(self._chatter),
        )

    def update_curves(self, curves: Sequence[Curve]):
        """Replace the curve list (free drive: curves from the latest lookahead)."""
        with self._lock:
            self._curves = tuple(sorted(curves, key=lambda c: c.distance_from_start))

    @property
    def curves(self) -> Tuple[Curve, ...]:
        return self._curves

    @property
    def zones(self) -> Tuple[Zone, ...]:
        return self._zones

    @property
    def last_budget(self) -> Optional[SpeechBudget]:
        """Speech budget computed on the most recent planning cycle."""
        return self._last_budget

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    @property
    def is_running(self) -> bool:
        return self._running

    def start(self):
        """Begin a drive with empty state."""
        with self._lock:
            self._state = self._new_state()
            self._running = True
        logger.info("Speech planner started")

    def stop(self):
        """End the drive: log a summary, reset state, and refuse to speak until start()."""
        with self._lock:
            if self._running:
                self._log_summary(final=True)
            self._running = False
            self._state = self._new_state()

    # ------------------------------------------------------------------
    # Announced tracking
    # ------------------------------------------------------------------

    def is_announced(self, item: Union[Curve, str]) -> bool:
        with self._lock:
            if isinstance(item, Curve):
                return item in self._state.announced_curves
            state = self._state
            return item in state.announced_events or item in state.announced_chatter

    def mark_announced(self, item: Union[Curve, Event, str]):
        with self._lock:
            self._mark(item)

    def _mark(self, item: Union[Curve, Event, str]):
        state = self._state
        if isinstance(item, Curve):
            state.announced_curves.add(item)
        elif isinstance(item, Event):
            if item.curve is not None:
                self._phase_set(item.phase).add(item.curve)
            elif item.source is EventSource.CHATTER:
                state.announced_chatter.add(item.id)
            else:
                state.announced_events.add(item.id)
        else:
            state.announced_events.add(item)

    def _phase_set(self, phase: CalloutPhase) -> AnnouncedCurves:
        state = self._state
        return {
            CalloutPhase.EARLY: state.early_called,
            CalloutPhase.FINAL: state.final_called,
            CalloutPhase.CLEAR: state.cleared_before,
        }.get(phase, state.announced_curves)

    def get_stats(self) -> Dict[str, Any]:
        """Copy of the planner counters and drive statistics."""
        with self._lock:
            state = self._state
            stats = dict(state.counters)
            stats['announced_curves'] = len(state.announced_curves)
            stats['remaining_curves'] = sum(
                1 for c in self._curves if c not in state.announced_curves
            )
            stats['current_zone'] = state.current_zone_id
            stats['drive'] = state.stats.summary()
            return stats

    # ------------------------------------------------------------------
    # Planning
    # ------------------------------------------------------------------

    def tick(self, inp: PlanningInput, now: Optional[float] = None) -> Optional[Utterance]:
        """
        Run one planning cycle.

        Returns:
            The utterance handed to the speech output, or None if the
            planner stayed quiet this tick
        """
        now = self._clock() if now is None else now
        with self._lock:
            if not self._running:
                return None
            state = self._state

            self._record_drive(inp, now)

            if not self._plan_due(inp, now):
                return None
            state.last_plan_distance = inp.distance
            state.last_plan_time = now

            self._cleanup_passed(inp)

            zone = zone_at(self._zones, inp.distance)
            upcoming = self.upcoming_events(inp)
            curve_events = [e for e in upcoming if e.source is EventSource.CURVE]
            budget = self.budget_for(curve_events, inp.speed_mph)
            self._last_budget = budget

            utterance = None
            if zone is not None and zone.zone_id != state.current_zone_id:
                state.current_zone_id = zone.zone_id
                utterance = self._plan_briefing(zone, curve_events, budget, inp, now)
            if utterance is None:
                utterance = self._plan_curve(curve_events, inp, now)
            if utterance is None and state.cooldown_until <= now:
                utterance = self._plan_clear(curve_events, inp, now)
            if utterance is None and state.cooldown_until <= now:
                utterance = self._plan_chatter(upcoming, budget, inp, now)
            if utterance is None and state.cooldown_until <= now:
                utterance = self._plan_transition(upcoming, budget, inp, now)

            if state.last_summary_time is None:
                state.last_summary_time = now
            elif now - state.last_summary_time >= self.config.stats_log_interval_s:
                state.last_summary_time = now
                self._log_summary(inp=inp)

            return utterance

    def budget_for(self, curve_events: Sequence[Event], speed_mph: float) -> SpeechBudget:
        ahead = [e.ahead for e in curve_events if e.ahead >= 0]
        return calculate_budget(min(ahead) if ahead else None, speed_mph, self.config)

    def upcoming_events(self, inp: PlanningInput) -> List[Event]:
        """Unannounced curves, zone transitions and chatter within the lookahead."""
        state = self._state
        horizon = self.config.lookahead_m
        events: List[Event] = []

        for curve in self._curves:
            ahead = curve.distance_from_start - inp.distance
            if ahead >= horizon:
                break
            if ahead <= -_CURVE_BEHIND_M or curve in state.announced_curves:
                continue
            events.append(Event(
                id=curve.id,
                distance=curve.distance_from_start,
                ahead=ahead,
                text="",
                source=EventSource.CURVE,
                priority=SOURCE_PRIORITY[EventSource.CURVE],
                curve=curve,
            ))

        for zone in self._zones[1:]:
            ahead = zone.start_distance - inp.distance
            event_id = f"transition-{zone.zone_id}"
            if ahead <= 0 or ahead >= horizon or event_id in state.announced_events:
                continue
            events.append(Event(
                id=event_id,
                distance=zone.start_distance,
                ahead=ahead,
                text=transition_callout(zone),
                source=EventSource.BRIEFING,
                priority=SOURCE_PRIORITY[EventSource.BRIEFING],
                zone=zone,
            ))

        for item in self._chatter:
            ahead = item.trigger_distance - inp.distance
            if ahead >= horizon:
                break
            if ahead <= -self.config.chatter_window_m or item.id in state.announced_chatter:
                continue
            events.append(Event(
                id=item.id,
                distance=item.trigger_distance,
                ahead=ahead,
                text=pick_variant(item, inp.speed_mph, self._rng),
                source=EventSource.CHATTER,
                priority=SOURCE_PRIORITY[EventSource.CHATTER],
            ))

        events.sort(key=lambda e: e.distance)
        return events

    def _plan_due(self, inp: PlanningInput, now: float) -> bool:
        state = self._state
        if state.last_plan_time is None:
            return True
        moved = abs(inp.distance - state.last_plan_distance)
        elapsed = now - state.last_plan_time
        return moved >= self.config.plan_distance_m or elapsed >= self.config.plan_interval_s

    def _record_drive(self, inp: PlanningInput, now: float):
        state = self._state
        delta = 0.0
        if state.last_distance is not None:
            delta = inp.distance - state.last_distance
        state.last_distance = inp.distance
        state.stats.record(delta, inp.speed_mph, inp.road_name, state.current_zone_id, now)

    def _cleanup_passed(self, inp: PlanningInput):
        """Mark curves the vehicle has already gone past as announced."""
        state = self._state
        use_bearing = (
            inp.lat is not None and inp.lon is not None and inp.heading is not None
            and inp.speed_mph >= self.config.heading_hold_speed_mph
        )

        for curve in self._curves:
            ahead = curve.distance_from_start - inp.distance
            if ahead > self.config.lookahead_m:
                break
            if curve in state.announced_curves:
                continue

            if ahead < -self.config.passed_behind_m:
                state.announced_curves.add(curve)
                logger.debug("Passed %s (%.0fm behind)", curve.id, -ahead)
                continue

            if not use_bearing:
                continue
            straight = haversine_distance(inp.lat, inp.lon, curve.lat, curve.lon)
            if straight <= self.config.passed_buffer_m:
                continue
            off = abs(angle_difference(inp.heading, bearing(inp.lat, inp.lon, curve.lat, curve.lon)))
            # A curve still ahead on the road is never further away in a
            # straight line than along the road
            if off > self.config.passed_bearing_deg and straight >= ahead:
                state.announced_curves.add(curve)
                logger.debug("Passed %s (%.0f° off heading, %.0fm away)", curve.id, off, straight)

    def _plan_briefing(
        self,
        zone: Zone,
        curve_events: Sequence[Event],
        budget: SpeechBudget,
        inp: PlanningInput,
        now: float,
    ) -> Optional[Utterance]:
        event_id = f"briefing-{zone.zone_id}"
        if event_id in self._state.announced_events:
            return None
        if budget.budget_seconds <= self.config.briefing_min_budget_s:
            logger.debug("Entered %s, no time for a briefing (%.1fs)", zone.zone_id, budget.budget_seconds)
            return None

        upcoming = [e.curve for e in curve_events if e.curve is not None and e.ahead >= 0]
        text = build_zone_briefing(zone, upcoming, budget.budget_seconds, self._zones)
        if not text:
            return None
        event = Event(
            id=event_id,
            distance=zone.start_distance,
            ahead=zone.start_distance - inp.distance,
            text=text,
            source=EventSource.BRIEFING,
            priority=SOURCE_PRIORITY[EventSource.BRIEFING],
            zone=zone,
        )
        return self._submit(text, EventSource.BRIEFING, event, inp, now)

    def _expected_speed(self) -> Optional[float]:
        """The drive's average speed so far, the yardstick for pushing/relaxed."""
        return self._state.stats.overall.avg_speed or None

    def _plan_curve(self, curve_events: Sequence[Event], inp: PlanningInput, now: float) -> Optional[Utterance]:
        profile = timing_profile(inp.mode)
        distances = warning_distances(inp.mode, inp.speed_mph, self._expected_speed())

        utterance = self._plan_final(distances.final, inp, now)
        if utterance is not None:
            return utterance

        for event in curve_events:
            curve = event.curve
            if event.ahead > max(distances.early, distances.main):
                break
            if event.ahead > distances.main:
                utterance = self._plan_early(event, inp, now)
                if utterance is not None:
                    return utterance
                continue
            if curve.angle < profile.min_callout_angle:
                self._mark(event)
                logger.debug(
                    "Skip %s: %.0f° below %s minimum %.0f°",
                    curve.id, curve.angle, inp.mode.value, profile.min_callout_angle,
                )
                continue
            if event.ahead <= 0:
                continue

            text = generate_callout(inp.mode, curve, CalloutPhase.MAIN)
            if not text:
                self._mark(event)
                continue
            return self._submit(text, EventSource.CURVE, event, inp, now)
        return None

    def _plan_early(self, event: Event, inp: PlanningInput, now: float) -> Optional[Utterance]:
        """Heads-up for a hard curve still outside the main trigger window."""
        curve = event.curve
        state = self._state
        if curve.severity > HARD_SEVERITY or curve in state.early_called:
            return None
        text = generate_callout(inp.mode, curve, CalloutPhase.EARLY)
        # Urban early and main calls are the same words
        if not text or text == generate_callout(inp.mode, curve, CalloutPhase.MAIN):
            state.early_called.add(curve)
            return None
        early = replace(event, text=text, phase=CalloutPhase.EARLY)
        return self._submit(text, EventSource.CURVE, early, inp, now)

    def _plan_final(self, final_m: float, inp: PlanningInput, now: float) -> Optional[Utterance]:
        """Last "now" for a hard curve that already had its main call."""
        state = self._state
        for curve in self._curves:
            ahead = curve.distance_from_start - inp.distance
            if ahead > final_m:
                break
            if ahead <= self.config.final_min_ahead_m or curve.severity > HARD_SEVERITY:
                continue
            if curve not in state.called_curves or curve in state.final_called:
                continue

            text = generate_callout(inp.mode, curve, CalloutPhase.FINAL)
            event = Event(
                id=curve.id,
                distance=curve.distance_from_start,
                ahead=ahead,
                text=text or "",
                source=EventSource.CURVE,
                priority=SOURCE_PRIORITY[EventSource.CURVE],
                curve=curve,
                phase=CalloutPhase.FINAL,
            )
            if not text:
                self._mark(event)
                continue
            return self._submit(text, EventSource.CURVE, event, inp, now)
        return None

    def _plan_clear(self, curve_events: Sequence[Event], inp: PlanningInput, now: float) -> Optional[Utterance]:
        """Tell a technical driver the road is clear up to a distant next curve."""
        if inp.mode is not DrivingMode.TECHNICAL:
            return None
        state = self._state
        ahead = [e for e in curve_events if e.ahead > 0]
        if not ahead or ahead[0].curve in state.cleared_before:
            return None
        last = state.last_spoken
        if last.source is not None and now - last.time < self.config.clear_min_silence_s:
            return None

        nxt = ahead[0]
        text = generate_clear_callout(inp.mode, nxt.ahead)
        if text is None:
            return None
        event = Event(
            id=f"clear-{nxt.id}",
            distance=nxt.distance,
            ahead=nxt.ahead,
            text=text,
            source=EventSource.SYSTEM,
            priority=SOURCE_PRIORITY[EventSource.SYSTEM],
            curve=nxt.curve,
            phase=CalloutPhase.CLEAR,
        )
        return self._submit(text, EventSource.SYSTEM, event, inp, now)

    def _plan_chatter(
        self,
        upcoming: Sequence[Event],
        budget: SpeechBudget,
        inp: PlanningInput,
        now: float,
    ) -> Optional[Utterance]:
        if not timing_profile(inp.mode).chatter_allowed:
            return None

        state = self._state
        window = self.config.chatter_window_m
        for event in upcoming:
            if event.source is not EventSource.CHATTER or not -window < event.ahead < window:
                continue

            if budget.budget_seconds <= self.config.chatter_min_budget_s:
                self._drop(event, f"curve in {budget.budget_seconds:.0f}s")
                return None
            since = inp.distance - state.last_spoken.distance
            if state.last_spoken.source is not None and since <= self.config.chatter_quiet_m:
                self._drop(event, f"too close to last speech ({since:.0f}m)")
                return None
            return self._submit(event.text, EventSource.CHATTER, event, inp, now)
        return None

    def _plan_transition(
        self,
        upcoming: Sequence[Event],
        budget: SpeechBudget,
        inp: PlanningInput,
        now: float,
    ) -> Optional[Utterance]:
        for event in upcoming:
            if event.source is not EventSource.BRIEFING or event.zone is None:
                continue
            if not self.config.transition_min_ahead_m <= event.ahead <= self.config.transition_max_ahead_m:
                continue
            if budget.budget_seconds <= self.config.transition_min_budget_s:
                self._drop(event, "curve imminent")
                return None
            return self._submit(event.text, EventSource.BRIEFING, event, inp, now)
        return None

    def _drop(self, event: Event, reason: str):
        self._mark(event)
        self._state.counters['dropped'] += 1
        logger.info("DROP [%s] \"%s\" - %s", event.source.value, event.text[:40], reason)

    # ------------------------------------------------------------------
    # Gatekeeper
    # ------------------------------------------------------------------

    def submit(
        self,
        text: str,
        source: EventSource,
        event: Optional[Event] = None,
        inp: Optional[PlanningInput] = None,
        now: Optional[float] = None,
    ) -> Optional[Utterance]:
        """
        Speak text unless it repeats recent speech or the voice is cooling down.

        Repeats are dropped for good (the event is marked announced); a
        cooldown only defers, so the event can fire on a later tick.

        Returns:
            The Utterance if it was handed to the speech output, else None
        """
        now = self._clock() if now is None else now
        with self._lock:
            if not self._running:
                return None
            if inp is None:
                inp = PlanningInput(
                    distance=self._state.last_distance or 0.0,
                    speed_mph=0.0,
                    mode=DrivingMode.SPIRITED,
                )
            return self._submit(text, source, event, inp, now)

    def _submit(
        self,
        text: str,
        source: EventSource,
        event: Optional[Event],
        inp: PlanningInput,
        now: float,
    ) -> Optional[Utterance]:
        if not text:
            return None
        state = self._state
        last = state.last_spoken
        since = inp.distance - last.distance

        if last.source is not None:
            for spoken, spoken_at in state.recent_speech:
                ago = inp.distance - spoken_at
                if text == spoken and abs(ago) < self.config.dedup_text_m:
                    if event is not None:
                        self._drop(event, f"same text {ago:.0f}m ago")
                    else:
                        state.counters['dropped'] += 1
                    return None
            if source is last.source and source is not EventSource.CURVE \
                    and abs(since) < self.config.dedup_source_m:
                if event is not None:
                    self._drop(event, f"same {source.value} {since:.0f}m ago")
                else:
                    state.counters['dropped'] += 1
                return None

        if now < state.cooldown_until:
            logger.debug("Deferred [%s] \"%s\" - cooldown", source.value, text[:40])
            return None

        priority = SOURCE_PRIORITY[source]
        profile_name = voice_profile_name(inp.mode)
        logger.info("[%.1fmi] [%s] \"%s\"", metres_to_miles(inp.distance), source.value, text)
        self.speech.speak(text, priority, profile_name)

        state.last_spoken = LastSpoken(text=text, source=source, time=now, distance=inp.distance)
        state.recent_speech.append((text, inp.distance))
        _, voice = adjust_for_speed(inp.mode, inp.speed_mph, self._expected_speed())
        state.cooldown_until = now + voice.min_pause_s
        if event is not None:
            self._mark(event)
            if event.curve is not None and event.phase is CalloutPhase.MAIN:
                state.called_curves.add(event.curve)

        state.counters['spoken'] += 1
        if source is EventSource.CURVE:
            state.counters['curves'] += 1
            state.stats.record_callout(state.current_zone_id, event.curve if event else None)
        elif source is EventSource.CHATTER:
            state.counters['chatter'] += 1
        elif source is EventSource.BRIEFING:
            state.counters['briefings'] += 1

        return Utterance(
            text=text,
            source=source,
            priority=priority,
            voice_profile=profile_name,
            distance=inp.distance,
            event_id=event.id if event else None,
        )

    def _log_summary(self, inp: Optional[PlanningInput] = None, final: bool = False):
        state = self._state
        c = state.counters
        distance = state.last_distance or 0.0
        remaining = sum(1 for curve in self._curves if curve not in state.announced_curves)
        if final:
            summary = state.stats.summary()
            logger.info(
                "NAV COMPLETE | %.1fmi | %.0fs | avg %.0fmph top %.0fmph | "
                "spoke:%d curves:%d chatter:%d briefings:%d dropped:%d",
                metres_to_miles(distance), summary['drive_time_s'],
                summary['avg_speed_mph'], summary['top_speed_mph'],
                c['spoken'], c['curves'], c['chatter'], c['briefings'], c['dropped'],
            )
            return
        logger.info(
            "%.1fmi | %.0fmph | %s | spoke:%d chatter:%d briefings:%d dropped:%d remaining:%d",
            metres_to_miles(distance), inp.speed_mph if inp else 0.0,
            inp.mode.value if inp else "-",
            c['spoken'], c['chatter'], c['briefings'], c['dropped'], remaining,
        )
