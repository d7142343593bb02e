"""
setup.py for the event-media monorepo.

Needed because the source tree does not follow the standard layout:
  - event_media lives under backend/src/event_media/
  - event_media_frontend lives under frontend/

pyproject.toml handles metadata; this file maps package dirs.
"""

from setuptools import setup

setup(
    package_dir={
        "event_media": "backend/src/event_media",
        "event_media_frontend": "frontend",
    },
    packages=[
        "event_media",
        "event_media.biometrics",
        "event_media.cli",
        "event_media.search",
        "event_media.storage",
        "event_media_frontend",
    ],
)
