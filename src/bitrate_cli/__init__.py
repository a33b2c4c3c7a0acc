"""
Bitrate Reader command line interface.
"""
