"""
Per-section news video channels.

The front end embeds these as placeholders; there is no live YouTube query.
"""
from datetime import datetime, timezone
from typing import Dict

import config

CHANNELS = {
    'world': [
        {'id': 'BBC', 'name': 'BBC News'},
        {'id': 'CNN', 'name': 'CNN'},
    ],
    'kr': [
        {'id': 'KBS', 'name': 'KBS News'},
        {'id': 'MBC', 'name': 'MBC News'},
    ],
    'japan': [
        {'id': 'NHK', 'name': 'NHK World'},
    ],
}

THUMBNAIL = 'https://via.placeholder.com/480x360'
EMBED_URL = 'https://www.youtube.com/embed/dQw4w9WgXcQ'


class VideoService:

    def __init__(self, channels: Dict = CHANNELS):
        self.channels = channels

    def get_videos(self, section: str = config.DEFAULT_SECTION) -> Dict:
        channels = self.channels.get(section) or self.channels[config.DEFAULT_SECTION]
        now = datetime.now(timezone.utc).isoformat()
        videos = [
            {
                'id': f'video_{section}_{i}',
                'title': f"Latest from {channel['name']}",
                'channel': channel['name'],
                'thumbnail': THUMBNAIL,
                'embedUrl': EMBED_URL,
                'publishedAt': now,
            }
            for i, channel in enumerate(channels)
        ]
        return {'section': section, 'videos': videos, 'total': len(videos)}
