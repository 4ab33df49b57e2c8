"""
node-label-preserver
- Keeps Kubernetes node labels alive across node deletion and re-creation.
"""

__version__ = "0.1.0"
