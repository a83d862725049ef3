from __future__ import annotations
from alembic import op
import sqlalchemy as sa

revision = '0001_initial'
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    op.create_table(
        'recommendations',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('version', sa.Integer, unique=True, index=True),
        sa.Column('count', sa.Integer, server_default='0'),
        sa.Column('status', sa.String(16), index=True),
        sa.Column('created_at', sa.DateTime, index=True),
        sa.Column('updated_at', sa.DateTime),
    )
    op.create_table(
        'recommendations_routes',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('recommendation_id', sa.String(36), sa.ForeignKey('recommendations.id'), index=True),
        sa.Column('application_id', sa.String(64), index=True),
        sa.Column('telemetry_id', sa.String(256), index=True),
        sa.Column('service_name', sa.String(128)),
        sa.Column('route', sa.String(1024)),
        sa.Column('domain', sa.String(256)),
        sa.Column('recommended', sa.Boolean, index=True),
        sa.Column('selected', sa.Boolean, index=True),
        sa.Column('applied', sa.Boolean),
        sa.Column('score', sa.Float),
        sa.Column('scores', sa.JSON),
        sa.Column('ttl', sa.Integer),
        sa.Column('cache_tag', sa.String(1024)),
        sa.Column('vary_headers', sa.JSON),
        sa.Column('hits', sa.Integer),
        sa.Column('misses', sa.Integer),
        sa.Column('memory', sa.Integer),
        sa.Column('created_at', sa.DateTime),
    )
    op.create_index('ix_rec_route_app_selected', 'recommendations_routes', ['recommendation_id', 'application_id', 'recommended', 'selected'])
    op.create_table(
        'route_examples',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('application_id', sa.String(64), index=True),
        sa.Column('telemetry_id', sa.String(256), index=True),
        sa.Column('route', sa.String(1024)),
        sa.Column('request', sa.JSON),
        sa.Column('response', sa.JSON),
        sa.Column('created_at', sa.DateTime),
        sa.Column('updated_at', sa.DateTime),
    )
    op.create_index('ux_route_example_key', 'route_examples', ['application_id', 'telemetry_id', 'route'], unique=True)
    op.create_table(
        'interceptor_configs',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('recommendation_id', sa.String(36), sa.ForeignKey('recommendations.id'), index=True),
        sa.Column('application_id', sa.String(64), index=True),
        sa.Column('applied', sa.Boolean),
        sa.Column('config', sa.JSON),
        sa.Column('created_at', sa.DateTime, index=True),
        sa.Column('updated_at', sa.DateTime),
    )
    op.create_index('ux_interceptor_config_rec_app', 'interceptor_configs', ['recommendation_id', 'application_id'], unique=True)


def downgrade():
    op.drop_index('ux_interceptor_config_rec_app', table_name='interceptor_configs')
    op.drop_table('interceptor_configs')
    op.drop_index('ux_route_example_key', table_name='route_examples')
    op.drop_table('route_examples')
    op.drop_index('ix_rec_route_app_selected', table_name='recommendations_routes')
    op.drop_table('recommendations_routes')
    op.drop_table('recommendations')
