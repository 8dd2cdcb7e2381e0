from eksdeploy.services.control_plane import ControlPlane

__all__ = ["ControlPlane"]
