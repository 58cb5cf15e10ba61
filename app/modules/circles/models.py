# Supabase tables: circles, circle_members, circle_assignments
# This file documents the expected database schema
# Actual operations are handled through app.database.row_store in the managers
#
# The 30 assignment rows and the completed_juz counter are maintained by the
# service itself; no trigger is expected on the database side.

"""
Expected Supabase table structure:

circles:
- id: uuid (primary key)
- code: varchar(9) (not null, unique) - format XXXX-XXXX
- name: varchar(50) (not null)
- organizer_id: varchar(100) (not null) - device id of the organizer
- created_at: timestamptz (default: now())
- expires_at: timestamptz (not null)
- total_juz: integer (not null, always 30)
- completed_juz: integer (not null, 0..30)
- status: varchar(20) (not null) - values: active, completed

circle_members:
- id: uuid (primary key)
- circle_id: uuid (foreign key to circles.id, not null, on delete cascade)
- device_id: varchar(100) (not null)
- nickname: varchar(20) (not null)
- joined_at: timestamptz (default: now())
- is_organizer: boolean (not null, default: false)
- unique constraint on (circle_id, device_id)

circle_assignments:
- id: uuid (primary key)
- circle_id: uuid (foreign key to circles.id, not null, on delete cascade)
- member_id: uuid (foreign key to circle_members.id, nullable, on delete set null)
  null when unassigned, and on completed Juz whose reader has left
- juz_number: integer (not null, 1..30)
- status: varchar(20) (not null) - values: unassigned, assigned, in_progress, completed
- assigned_at: timestamptz (nullable)
- completed_at: timestamptz (nullable)
- unique constraint on (circle_id, juz_number)
"""

CIRCLES_TABLE = "circles"
MEMBERS_TABLE = "circle_members"
ASSIGNMENTS_TABLE = "circle_assignments"
