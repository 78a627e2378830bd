class RedisResources:
    """Encapsulates the naming scheme used for the resources which the operator manages
    for a Redis database."""

    TLS_SERVER_CERT = "server"
    TLS_CLIENT_CERT = "client"
    TLS_METRICS_EXPORTER_CERT = "metrics-exporter"
    TLS_CERT_ALIASES = (TLS_SERVER_CERT, TLS_CLIENT_CERT, TLS_METRICS_EXPORTER_CERT)

    @classmethod
    def service_name(self, db_name: str):
        """Returns the name of the primary client-facing service."""
        return db_name

    @classmethod
    def governing_service_name(self, db_name: str):
        """Returns the name of the headless service used for peer discovery."""
        return f"{db_name}-pods"

    @classmethod
    def stats_service_name(self, db_name: str):
        return f"{db_name}-stats"

    @classmethod
    def service_monitor_name(self, db_name: str):
        return f"{db_name}-stats"

    @classmethod
    def config_map_name(self, db_name: str):
        return f"{db_name}-config"

    @classmethod
    def service_account_name(self, db_name: str):
        return db_name

    @classmethod
    def role_name(self, db_name: str):
        return db_name

    @classmethod
    def role_binding_name(self, db_name: str):
        return db_name

    @classmethod
    def app_binding_name(self, db_name: str):
        return db_name

    @classmethod
    def stateful_set_name(self, db_name: str, shard: int = None):
        """Standalone databases run one stateful set; cluster mode runs one per shard."""
        if shard is None:
            return db_name
        return f"{db_name}-shard{shard}"

    @classmethod
    def default_auth_secret_name(self, db_name: str):
        return f"{db_name}-auth"

    @classmethod
    def default_cert_secret_name(self, db_name: str, alias: str):
        return f"{db_name}-{alias}-cert"

    @classmethod
    def cert_secret_name(self, db_name: str, spec, alias: str):
        """Secret holding the certificate issued for `alias`; may be overridden in spec.tls."""
        if spec.tls:
            for cert in spec.tls.certificates or []:
                if cert.alias == alias and cert.secret_name:
                    return cert.secret_name
        return self.default_cert_secret_name(db_name, alias)

    @classmethod
    def auth_secret_name(self, db_name: str, spec):
        if spec.auth_secret:
            return spec.auth_secret.name
        return self.default_auth_secret_name(db_name)

    @classmethod
    def named_secret_names(self, db_name: str, spec):
        """Secrets a database references by name; their fate depends on the termination policy."""
        names = [self.auth_secret_name(db_name, spec)]
        if spec.config_secret:
            names.append(spec.config_secret.name)
        if spec.tls:
            names.extend(
                self.cert_secret_name(db_name, spec, alias)
                for alias in self.TLS_CERT_ALIASES
            )
        return names
