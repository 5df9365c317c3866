"""Core configuration, logging, and the inspection workflow."""
