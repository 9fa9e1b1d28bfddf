"""
Spotify Keep Awake launcher package.
"""
