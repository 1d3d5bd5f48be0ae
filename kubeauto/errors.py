"""Exceptions raised by kubeauto."""


class KubeautoError(Exception):
    """Base class for kubeauto errors."""


class SetupError(KubeautoError):
    """The cluster cannot be reached or the initial state cannot be read."""


class TunnelLost(KubeautoError):
    """A port-forward tunnel lost its pod, typically because the pod went away."""

    def __init__(self, pod: str, port: int):
        super().__init__(f"lost connection to pod {pod} on port {port}")
        self.pod = pod
        self.port = port
