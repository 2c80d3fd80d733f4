"""Security switch: moves requests between http and https by path rules."""
