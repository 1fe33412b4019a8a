"""
SQL used by discovery and polling
"""

# Discovery
DISCOVERY_DEVICE_BY_ID = """
    SELECT d.id, d.ip, d.port, c.username, c.password, c.system_type
    FROM discovery_profile d
    JOIN credential_profile c ON d.credential_profile_id = c.id
    WHERE d.id = $1
"""

ALL_DISCOVERY_DEVICES = """
    SELECT d.id, d.ip, d.port, c.username, c.password, c.system_type
    FROM discovery_profile d
    JOIN credential_profile c ON d.credential_profile_id = c.id
    ORDER BY d.id
"""

CREDENTIAL_BY_ID = """
    SELECT id, name, username, password, system_type
    FROM credential_profile
    WHERE id = $1
"""

UPDATE_DISCOVERY_STATUS = "UPDATE discovery_profile SET status = $1 WHERE id = $2"

# Polling
PROVISIONED_DEVICES_FOR_POLLING = """
    SELECT p.id, p.ip, p.port, c.username, c.password, c.system_type
    FROM provisioned_device p
    JOIN credential_profile c ON p.credential_profile_id = c.id
    WHERE p.is_deleted = false
    ORDER BY p.id
"""

INSERT_AVAILABILITY = """
    INSERT INTO availability (provisioned_device_id, was_available, checked_at)
    VALUES ($1, $2, $3)
"""

INSERT_POLLING_RESULT = """
    INSERT INTO polling_result (provisioned_device_id, metrics, polled_at)
    VALUES ($1, $2::jsonb, $3)
"""

SET_PROVISION_DELETED = "UPDATE provisioned_device SET is_deleted = $1 WHERE id = $2 RETURNING id"

AVAILABILITY_PERCENT = """
    SELECT ROUND(
        COUNT(*) FILTER (WHERE was_available) / GREATEST(COUNT(*), 1)::decimal * 100, 2
    ) AS availability_percent
    FROM availability
    WHERE provisioned_device_id = $1
"""
