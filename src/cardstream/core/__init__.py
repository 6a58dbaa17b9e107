"""Configuration, errors and logging shared by all cardstream components."""
