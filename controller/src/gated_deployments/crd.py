"""GatedDeployment custom resource definition."""

from .kube import GATED_DEPLOYMENT_GROUP, GATED_DEPLOYMENT_PLURAL, GATED_DEPLOYMENT_VERSION

_DEPLOYMENT_REF = {
    "type": "object",
    "required": ["name"],
    "properties": {"name": {"type": "string"}},
}

CUSTOM_RESOURCE_MANIFEST: dict = {
    "apiVersion": "apiextensions.k8s.io/v1",
    "kind": "CustomResourceDefinition",
    "metadata": {"name": f"{GATED_DEPLOYMENT_PLURAL}.{GATED_DEPLOYMENT_GROUP}"},
    "spec": {
        "group": GATED_DEPLOYMENT_GROUP,
        "scope": "Namespaced",
        "names": {
            "plural": GATED_DEPLOYMENT_PLURAL,
            "singular": "gateddeployment",
            "kind": "GatedDeployment",
            "shortNames": ["gd"],
        },
        "versions": [
            {
                "name": GATED_DEPLOYMENT_VERSION,
                "served": True,
                "storage": True,
                "schema": {
                    "openAPIV3Schema": {
                        "type": "object",
                        "required": ["deploymentDescriptor"],
                        "properties": {
                            "deploymentDescriptor": {
                                "type": "object",
                                "required": ["control", "treatment", "decisionPlugins"],
                                "properties": {
                                    "control": _DEPLOYMENT_REF,
                                    "treatment": _DEPLOYMENT_REF,
                                    "decisionPlugins": {
                                        "type": "array",
                                        "items": {
                                            "type": "object",
                                            "required": ["name"],
                                            "x-kubernetes-preserve-unknown-fields": True,
                                            "properties": {
                                                "name": {"type": "string"},
                                                "maxTime": {"type": "integer"},
                                            },
                                        },
                                    },
                                },
                            },
                        },
                    },
                },
            },
        ],
    },
}
