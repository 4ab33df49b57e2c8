"""
kube_client.py
- Provides the shared, preconfigured Kubernetes CoreV1Api used by all modules.
- Tries in-cluster configuration first, then falls back to the local kubeconfig.
"""

from kubernetes import client, config as k8s_config
from loguru import logger


def load_core_api():
    """
    Load Kubernetes credentials and return a CoreV1Api client.

    Raises:
        kubernetes.config.ConfigException: If neither in-cluster nor kubeconfig credentials exist.
    """
    try:
        k8s_config.load_incluster_config()
        logger.info("[kube] Loaded in-cluster Kubernetes configuration")
    except k8s_config.ConfigException:
        k8s_config.load_kube_config()
        logger.info("[kube] Loaded kubeconfig from local system")
    return client.CoreV1Api()
