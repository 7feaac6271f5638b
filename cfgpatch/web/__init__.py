# cfgpatch web API
