"""
Signage device client.
Registration, playlist/timeline sync, license enforcement, media caching
and realtime control for a display device.
"""
