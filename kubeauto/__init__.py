"""Watch resources, tail logs and port-forward pods matching a label selector."""

from kubeauto.state import Status, infer

__all__ = ["Status", "infer"]
