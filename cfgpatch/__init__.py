# cfgpatch - Klipper config patch engine
__version__ = "1.0.0"
