from .wall_api import FeedAPI, WallAPIClient, mention_ids, tag_names

__all__ = ["FeedAPI", "WallAPIClient", "mention_ids", "tag_names"]
