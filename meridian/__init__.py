# Meridian - supplier content mapping for the wholesale platform
