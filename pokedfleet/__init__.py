"""PokedFleet: maintenance, scavenging and race-prep automation for a PokedBots garage."""

__version__ = "1.0.0"
