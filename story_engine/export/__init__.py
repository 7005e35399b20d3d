from story_engine.export.story import ExportResult, export_story

__all__ = ["ExportResult", "export_story"]
