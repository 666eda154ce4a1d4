# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/namesync/k8s/client.py
from __future__ import annotations

import logging
from typing import Optional

from kubernetes import client, config

log = logging.getLogger("namesync")


def load_core_api(kubeconfig: Optional[str] = None, kube_context: Optional[str] = None) -> client.CoreV1Api:
    """
    CoreV1Api for the cluster we run in.

    Uses the in-cluster service account when running in a pod and no explicit
    kubeconfig is given; falls back to the local kubeconfig otherwise.

    Args:
        kubeconfig: optional path to a kubeconfig file
        kube_context: optional kube context to load
    """
    if kubeconfig is None and kube_context is None:
        try:
            config.load_incluster_config()
            log.debug("Loaded in-cluster Kubernetes config")
            return client.CoreV1Api()
        except config.ConfigException:
            log.debug("Not running in a cluster, falling back to kubeconfig")

    config.load_kube_config(config_file=kubeconfig, context=kube_context)
    return client.CoreV1Api()
