from django.db import migrations, models
import django.db.models.deletion
import django.utils.timezone


class Migration(migrations.Migration):

    initial = True

    dependencies = [
        ('podcasts', '0001_initial'),
    ]

    operations = [
        migrations.CreateModel(
            name='HubSubscription',
            fields=[
                ('id', models.AutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('created', models.DateTimeField(auto_now_add=True)),
                ('modified', models.DateTimeField(auto_now=True)),
                ('topic_url', models.URLField(max_length=2048, unique=True)),
                ('hub_url', models.URLField(max_length=1000)),
                ('secret', models.CharField(max_length=64)),
                ('mode', models.CharField(blank=True, choices=[('subscribe', 'subscribe'), ('unsubscribe', 'unsubscribe')], max_length=11)),
                ('status', models.CharField(choices=[('pending', 'pending'), ('active', 'active'), ('expired', 'expired')], db_index=True, default='pending', max_length=7)),
                ('requested_lease_seconds', models.PositiveIntegerField()),
                ('lease_seconds', models.PositiveIntegerField()),
                ('expires_at', models.DateTimeField(db_index=True)),
                ('verified_at', models.DateTimeField(blank=True, null=True)),
                ('podcast', models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.SET_NULL, to='podcasts.podcast')),
            ],
            options={
                'ordering': ['-modified'],
            },
        ),
        migrations.CreateModel(
            name='CallbackLog',
            fields=[
                ('id', models.AutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('type', models.CharField(choices=[('verification', 'verification'), ('notification', 'notification')], max_length=12)),
                ('topic_url', models.URLField(blank=True, max_length=2048)),
                ('method', models.CharField(max_length=10)),
                ('headers', models.JSONField(default=dict)),
                ('params', models.JSONField(default=dict)),
                ('body', models.TextField(blank=True)),
                ('response_status', models.PositiveSmallIntegerField()),
                ('response_body', models.TextField(blank=True)),
                ('created', models.DateTimeField(db_index=True, default=django.utils.timezone.now)),
            ],
            options={
                'ordering': ['-created'],
                'get_latest_by': 'created',
            },
        ),
        migrations.AddIndex(
            model_name='callbacklog',
            index=models.Index(fields=['topic_url', 'type', 'created'], name='callbacklog_topic_type'),
        ),
    ]
