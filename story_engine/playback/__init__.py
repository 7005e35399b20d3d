"""Client-side scene playback: phase machine plus image and audio sub-machines."""

from story_engine.playback.audio import AudioLifecycle, AudioPhase, AudioSink
from story_engine.playback.events import EventBus, PlaybackEvent
from story_engine.playback.image_transition import ImagePhase, ImageTransition
from story_engine.playback.machine import Phase, PlaybackMachine, PlaybackState
from story_engine.playback.scheduler import AsyncioScheduler, Scheduler

__all__ = [
    "AsyncioScheduler",
    "AudioLifecycle",
    "AudioPhase",
    "AudioSink",
    "EventBus",
    "ImagePhase",
    "ImageTransition",
    "Phase",
    "PlaybackEvent",
    "PlaybackMachine",
    "PlaybackState",
    "Scheduler",
]
