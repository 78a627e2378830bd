from typing import Dict, Optional


class ResourceLabels:
    REDOP_DOMAIN: str = "redop.io"

    KUBERNETES_DOMAIN = "app.kubernetes.io/"

    KUBERNETES_NAME_LABEL = KUBERNETES_DOMAIN + "name"

    KUBERNETES_INSTANCE_LABEL = KUBERNETES_DOMAIN + "instance"

    KUBERNETES_COMPONENT_LABEL = KUBERNETES_DOMAIN + "component"

    KUBERNETES_MANAGED_BY_LABEL = KUBERNETES_DOMAIN + "managed-by"

    REDIS_SHARD_LABEL = REDOP_DOMAIN + "/shard"


class Labels(ResourceLabels):
    """Label set attached to every offshoot of a Redis database."""

    #: Value of the name label; `<plural>.<group>` of the Redis CRD
    RESOURCE_FQN = "redises.redop.io"

    COMPONENT_DATABASE = "database"

    _labels: Dict[str, str]

    def __init__(self, labels: Dict[str, str] = None) -> None:
        self._labels = labels if labels else dict()

    def update(self, labels: Dict[str, str]) -> "Labels":
        self._labels.update(labels.copy())
        return self

    def as_dict(self) -> Dict[str, str]:
        """Return labels as dictionary."""
        return self._labels.copy()

    def as_str(self):
        """Return labels as comma separated string."""
        return ",".join([f"{k}={v}" for k, v in self._labels.items()])

    def include(self, label: str, value: str) -> "Labels":
        self.update({label: value})
        return self

    def include_kubernetes_name(self, name: str) -> "Labels":
        return self.include(self.KUBERNETES_NAME_LABEL, name)

    def include_kubernetes_instance(self, instance_name: str) -> "Labels":
        return self.include(self.KUBERNETES_INSTANCE_LABEL, instance_name)

    def include_kubernetes_component(self, component: str) -> "Labels":
        return self.include(self.KUBERNETES_COMPONENT_LABEL, component)

    def include_kubernetes_managed_by(self, operator_name: str) -> "Labels":
        return self.include(self.KUBERNETES_MANAGED_BY_LABEL, operator_name)

    def include_shard(self, shard: int) -> "Labels":
        return self.include(self.REDIS_SHARD_LABEL, str(shard))

    def offshoot_selectors(self) -> "Labels":
        """Labels shared by every offshoot of one database."""
        selector_labels = [
            self.KUBERNETES_NAME_LABEL,
            self.KUBERNETES_INSTANCE_LABEL,
        ]
        return Labels(
            {
                key: self._labels[key]
                for key in selector_labels
                if key in self._labels
            }
        )

    def __str__(self):
        return f"Labels<{self._labels}>"

    @classmethod
    def generate_offshoot_labels(cls, db_name: str, managed_by: str) -> "Labels":
        labels = Labels()
        return (
            labels.include_kubernetes_name(cls.RESOURCE_FQN)
            .include_kubernetes_instance(db_name)
            .include_kubernetes_component(cls.COMPONENT_DATABASE)
            .include_kubernetes_managed_by(managed_by)
        )

    @classmethod
    def database_name_for(cls, labels: Optional[Dict[str, str]]) -> Optional[str]:
        """Recover the owning database's name from an offshoot's labels."""
        if not labels or labels.get(cls.KUBERNETES_NAME_LABEL) != cls.RESOURCE_FQN:
            return None
        return labels.get(cls.KUBERNETES_INSTANCE_LABEL) or None
