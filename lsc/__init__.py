"""Log Stack Converger (LSC).

Idempotent bootstrap-and-converge tooling for a single-host log stack
(Elasticsearch, Kibana, Filebeat) running as Docker containers:
 - secrets generated once and kept in a master env file
 - configs rendered from templates, written only when they change
 - containers recreated only when their effective definition changes
 - readiness probes that stop early on known-fatal conditions

Every stage can be re-run after a partial failure.
"""
