from story_engine.client.session import SceneFetcher, StoryController

__all__ = ["SceneFetcher", "StoryController"]
