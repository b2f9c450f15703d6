"""
picolayer — install software into container images without leaving
package-manager caches behind in the resulting layer.
"""

__version__ = "0.4.0"
