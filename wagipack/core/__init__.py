"""清单展开引擎核心"""
