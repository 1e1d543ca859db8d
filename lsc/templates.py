"""Config file templates for the log stack.

`{{ NAME }}` is filled in at render time (and must not be empty),
`{{ NAME | default("") }}` may render empty, and `${NAME}` is passed through for the
container runtime to expand from the service's env file.
"""

ELASTICSEARCH_YML = r"""cluster.name: "{{ CLUSTER_NAME }}"
node.name: "{{ ES_HOST }}"
network.host: 0.0.0.0
discovery.type: single-node

path.data: /usr/share/elasticsearch/data
path.logs: /usr/share/elasticsearch/logs

xpack.security.enabled: true

xpack.security.http.ssl:
  enabled: true
  key: /usr/share/elasticsearch/config/certs/elasticsearch.key
  certificate: /usr/share/elasticsearch/config/certs/elasticsearch.crt
  certificate_authorities: [ "/usr/share/elasticsearch/config/certs/ca.pem" ]

xpack.security.transport.ssl:
  enabled: true
  key: /usr/share/elasticsearch/config/certs/elasticsearch.key
  certificate: /usr/share/elasticsearch/config/certs/elasticsearch.crt
  certificate_authorities: [ "/usr/share/elasticsearch/config/certs/ca.pem" ]

ingest.geoip.downloader.enabled: false
"""

KIBANA_YML = r"""server.host: "0.0.0.0"
server.name: "{{ KIBANA_HOST }}"
server.publicBaseUrl: "https://{{ KIBANA_HOST }}:5601"

server.ssl.enabled: true
server.ssl.certificate: "/usr/share/kibana/config/certs/kibana.crt"
server.ssl.key: "/usr/share/kibana/config/certs/kibana.key"
server.ssl.certificateAuthorities: ["/usr/share/kibana/config/certs/ca.pem"]

elasticsearch.hosts: [ "https://{{ ES_HOST }}:9200" ]
elasticsearch.ssl.certificateAuthorities: [ "/usr/share/kibana/config/certs/ca.pem" ]
elasticsearch.username: "kibana_system"
elasticsearch.password: "${ELASTICSEARCH_PASSWORD}"

xpack.security.encryptionKey: "${XPACK_SECURITY_ENCRYPTIONKEY}"
xpack.encryptedSavedObjects.encryptionKey: "${XPACK_ENCRYPTEDSAVEDOBJECTS_ENCRYPTIONKEY}"
xpack.reporting.encryptionKey: "${XPACK_REPORTING_ENCRYPTIONKEY}"

telemetry.enabled: false
telemetry.optIn: false
newsfeed.enabled: false
map.includeElasticMapsService: false
xpack.fleet.enabled: false
xpack.apm.enabled: false

xpack.actions.preconfigured:
  mattermost-webhook:
    name: "Mattermost CI/CD Channel"
    actionTypeId: .webhook
    config:
      url: "${MATTERMOST_WEBHOOK_URL}"
      method: post
      hasAuth: false
"""

FILEBEAT_YML = r"""filebeat.inputs:
  - type: filestream
    id: jenkins-logs
    paths:
      - /host_volumes/jenkins-home/_data/logs/jenkins.log
    fields: { service_name: "jenkins" }
    fields_under_root: true
    multiline.type: pattern
    multiline.pattern: '^\d{4}-\d{2}-\d{2}'
    multiline.negate: true
    multiline.match: after

  - type: filestream
    id: gitlab-nginx
    paths:
      - /host_volumes/gitlab-logs/_data/nginx/*access.log
      - /host_volumes/gitlab-logs/_data/nginx/*error.log
    fields: { service_name: "gitlab-nginx" }
    fields_under_root: true

  - type: filestream
    id: sonarqube-ce
    paths:
      - /host_volumes/sonarqube-logs/_data/ce.log
    fields: { service_name: "sonarqube" }
    fields_under_root: true
    multiline.type: pattern
    multiline.pattern: '^\d{4}.\d{2}.\d{2}'
    multiline.negate: true
    multiline.match: after

  - type: filestream
    id: mattermost
    paths:
      - /host_volumes/mattermost-logs/_data/mattermost.log
    fields: { service_name: "mattermost" }
    fields_under_root: true

  - type: filestream
    id: artifactory
    paths:
      - /host_volumes/artifactory-data/_data/log/artifactory-service.log
      - /host_volumes/artifactory-data/_data/log/artifactory-request.log
      - /host_volumes/artifactory-data/_data/log/access-service.log
    fields: { service_name: "artifactory" }
    fields_under_root: true
    multiline.type: pattern
    multiline.pattern: '^\d{4}-\d{2}-\d{2}'
    multiline.negate: true
    multiline.match: after

  - type: filestream
    id: host-system
    paths:
      - /host_system_logs/syslog
      - /host_system_logs/auth.log
    fields: { service_name: "system" }
    fields_under_root: true

output.elasticsearch:
  hosts: ["https://{{ ES_HOST }}:9200"]
  pipeline: "{{ PIPELINE_NAME }}"
  protocol: "https"
  ssl.certificate_authorities: ["/usr/share/filebeat/certs/ca.pem"]
  username: "elastic"
  password: "${ELASTIC_PASSWORD}"

setup.ilm.enabled: false
setup.template.enabled: false
"""

ELASTICSEARCH_ENV = """ELASTIC_PASSWORD={{ ELASTIC_PASSWORD }}
ES_JAVA_OPTS=-Xms{{ ES_HEAP }} -Xmx{{ ES_HEAP }}
"""

KIBANA_ENV = """ELASTICSEARCH_PASSWORD={{ KIBANA_PASSWORD }}
XPACK_SECURITY_ENCRYPTIONKEY={{ XPACK_SECURITY_ENCRYPTIONKEY }}
XPACK_ENCRYPTEDSAVEDOBJECTS_ENCRYPTIONKEY={{ XPACK_ENCRYPTEDSAVEDOBJECTS_ENCRYPTIONKEY }}
XPACK_REPORTING_ENCRYPTIONKEY={{ XPACK_REPORTING_ENCRYPTIONKEY }}
MATTERMOST_WEBHOOK_URL={{ SONAR_MATTERMOST_WEBHOOK | default("") }}
"""

FILEBEAT_ENV = """ELASTIC_PASSWORD={{ ELASTIC_PASSWORD }}
"""

TEMPLATES: dict[str, str] = {
    "elasticsearch.yml": ELASTICSEARCH_YML,
    "elasticsearch.env": ELASTICSEARCH_ENV,
    "kibana.yml": KIBANA_YML,
    "kibana.env": KIBANA_ENV,
    "filebeat.yml": FILEBEAT_YML,
    "filebeat.env": FILEBEAT_ENV,
}
