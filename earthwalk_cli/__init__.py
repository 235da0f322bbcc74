"""
Earthwalk CLI - offline replays and device simulation.

This package replays recorded GPS tracks through the claim and exploration
sessions on a virtual clock, and can publish a track to a broker as a
simulated device.

Usage:
    earthwalk convert 39.9087 116.3975
    earthwalk claim config/tracks/square_walk.yaml --territories config/territories.yaml
    earthwalk explore config/tracks/square_walk.yaml --pois config/pois.yaml
    earthwalk publish-track config/tracks/square_walk.yaml --device-id pixel-7
"""

__version__ = "1.0.0"
